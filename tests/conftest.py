"""
Pytest fixtures for txpager tests. Nodes and transports are in-memory fakes;
nothing here talks to a real network.
"""

from __future__ import annotations

import pytest

from txpager.adapter import NodeAdapter
from txpager.errors import TransportError
from txpager.node import parse_quantity

ADDRESS = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20


def make_tx(block, index=0, tx_hash=None, sender=ADDRESS, to=OTHER, value="0x0", **extra):
    """Raw node transaction dict. block may be an int or a hex/decimal string."""
    tx = {
        "hash": tx_hash or f"0x{parse_quantity(block):08x}{index or 0:04x}",
        "blockNumber": block,
        "from": sender,
        "to": to,
        "value": value,
    }
    if index is not None:
        tx["transactionIndex"] = index
    tx.update(extra)
    return tx


class FakeNode:
    """Node holding a fixed set of transactions; records every scanned range."""

    def __init__(self, height, txs=(), connected=True, fail_on_call=None):
        self.height = height
        self.txs = list(txs)
        self.connected = connected
        self.fail_on_call = fail_on_call
        self.queried = []
        self.height_calls = 0

    def is_connected(self):
        return self.connected

    def current_height(self):
        self.height_calls += 1
        return self.height

    def query_transactions_by_address_in_range(self, address, from_block_hex, to_block_hex):
        lo, hi = int(from_block_hex, 16), int(to_block_hex, 16)
        self.queried.append((lo, hi))
        if self.fail_on_call is not None and len(self.queried) == self.fail_on_call:
            raise TransportError("connection reset by peer")
        return [dict(tx) for tx in self.txs if lo <= parse_quantity(tx["blockNumber"]) <= hi]

    def transaction_by_hash(self, tx_hash):
        for tx in self.txs:
            if tx["hash"] == tx_hash:
                return dict(tx)
        return None

    def balance(self, address):
        return "1000000000000000000"


class FakeTransport:
    """
    JSON-RPC transport answering from a dict of method -> value or callable.
    Callables receive the params list.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.closed = False

    def request(self, method, params):
        self.calls.append((method, params))
        if method not in self.responses:
            raise TransportError(f"unexpected method {method}")
        response = self.responses[method]
        return response(params) if callable(response) else response

    def close(self):
        self.closed = True


@pytest.fixture
def fake_node():
    return FakeNode


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def connected_adapter():
    """NodeAdapter wired to a FakeNode without going through init()."""

    def build(node, chunk_size=100000):
        adapter = NodeAdapter(chunk_size=chunk_size)
        adapter.node = node
        return adapter

    return build


@pytest.fixture
def api(monkeypatch):
    """FastAPI TestClient plus a setter for the adapter the app uses."""
    from fastapi.testclient import TestClient

    import txpager.main as main

    def use(adapter):
        monkeypatch.setattr(main, "adapter", adapter)

    use(NodeAdapter())
    return TestClient(main.app), use
