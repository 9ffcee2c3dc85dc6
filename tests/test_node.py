"""Tests for the JSON-RPC node and its address-history strategies."""

from __future__ import annotations

import pytest

from conftest import ADDRESS, FakeTransport, make_tx
from txpager.errors import DecodeError, TransportError
from txpager.node import (
    JsonRpcNode,
    LogAddressIndex,
    SbchAddressIndex,
    address_topic,
    normalize_block_id,
    parse_quantity,
)

BLOCK_HASH = "0x" + "11" * 32


@pytest.mark.parametrize(
    "value,expected",
    [(7, 7), ("0x1e8480", 2_000_000), ("0X10", 16), ("2000000", 2_000_000), ("0x0", 0)],
)
def test_parse_quantity(value, expected):
    assert parse_quantity(value) == expected


@pytest.mark.parametrize("value", [None, True, "latest", "", 1.5])
def test_parse_quantity_rejects_non_quantities(value):
    with pytest.raises(ValueError):
        parse_quantity(value)


def test_normalize_block_id():
    assert normalize_block_id(255) == "0xff"
    assert normalize_block_id("latest") == "latest"
    assert normalize_block_id("0x10") == "0x10"
    assert normalize_block_id("16") == "0x10"
    with pytest.raises(ValueError):
        normalize_block_id("tip")


def test_address_topic_pads_to_32_bytes():
    topic = address_topic("0x" + "AB" * 20)
    assert topic == "0x" + "0" * 24 + "ab" * 20
    with pytest.raises(ValueError):
        address_topic("0x1234")


def test_current_height_parses_hex():
    node = JsonRpcNode(FakeTransport({"eth_blockNumber": "0xf4240"}))
    assert node.current_height() == 1_000_000


def test_balance_is_decimal_wei_string():
    transport = FakeTransport({"eth_getBalance": "0xde0b6b3a7640000"})
    node = JsonRpcNode(transport)
    assert node.balance(ADDRESS) == "1000000000000000000"
    assert transport.calls == [("eth_getBalance", [ADDRESS, "latest"])]


def test_transaction_count():
    node = JsonRpcNode(FakeTransport({"eth_getTransactionCount": "0x2a"}))
    assert node.transaction_count(ADDRESS) == 42


def test_block_by_number_and_hash():
    transport = FakeTransport({
        "eth_getBlockByNumber": {"number": "0x64"},
        "eth_getBlockByHash": {"number": "0x65"},
    })
    node = JsonRpcNode(transport)

    assert node.block_by_number(100) == {"number": "0x64"}
    assert node.block_by_number(BLOCK_HASH) == {"number": "0x65"}
    assert transport.calls == [
        ("eth_getBlockByNumber", ["0x64", False]),
        ("eth_getBlockByHash", [BLOCK_HASH, False]),
    ]


def test_missing_block_is_transport_error():
    node = JsonRpcNode(FakeTransport({"eth_getBlockByNumber": None}))
    with pytest.raises(TransportError):
        node.block_by_number(5)


def test_transactions_in_block_requests_full_block():
    txs = [make_tx(100), make_tx(100, index=1)]
    transport = FakeTransport({"eth_getBlockByNumber": {"transactions": txs}})
    node = JsonRpcNode(transport)

    assert node.transactions_in_block("latest") == txs
    assert transport.calls == [("eth_getBlockByNumber", ["latest", True])]


def test_query_logs_builds_filter():
    transport = FakeTransport({"eth_getLogs": [{"transactionHash": "0x1"}]})
    node = JsonRpcNode(transport)
    topic0 = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

    logs = node.query_logs(ADDRESS, [topic0], 0, "latest")

    assert logs == [{"transactionHash": "0x1"}]
    assert transport.calls == [
        ("eth_getLogs", [{"fromBlock": "0x0", "toBlock": "latest", "topics": [topic0], "address": ADDRESS}])
    ]


def test_call_decodes_return_value():
    raw = "0x" + hex(42)[2:].rjust(64, "0")
    node = JsonRpcNode(FakeTransport({"eth_call": raw}))
    assert node.call({"to": ADDRESS, "data": "0x18160ddd"}, "uint256") == 42


@pytest.mark.parametrize("raw", ["0x", None, "0xzz"])
def test_call_undecodable_payload_raises_decode_error(raw):
    node = JsonRpcNode(FakeTransport({"eth_call": raw}))
    with pytest.raises(DecodeError):
        node.call({"to": ADDRESS, "data": "0x95d89b41"}, "uint256")


def test_transport_errors_propagate():
    node = JsonRpcNode(FakeTransport({}))
    with pytest.raises(TransportError):
        node.current_height()


@pytest.mark.parametrize(
    "method,call",
    [
        ("eth_blockNumber", lambda node: node.current_height()),
        ("eth_getBalance", lambda node: node.balance(ADDRESS)),
        ("eth_getTransactionCount", lambda node: node.transaction_count(ADDRESS)),
    ],
)
@pytest.mark.parametrize("reply", [None, "garbage", "0xzz"])
def test_malformed_quantity_from_node_is_transport_error(method, call, reply):
    node = JsonRpcNode(FakeTransport({method: reply}))
    with pytest.raises(TransportError, match="malformed"):
        call(node)


def test_log_index_malformed_block_number_is_transport_error():
    transport = FakeTransport({
        "eth_getLogs": [{"transactionHash": "0xa", "blockNumber": "garbage", "transactionIndex": "0x0"}],
        "eth_getTransactionByHash": {"hash": "0xa"},
    })
    node = JsonRpcNode(transport, LogAddressIndex())
    with pytest.raises(TransportError, match="blockNumber"):
        node.query_transactions_by_address_in_range(ADDRESS, "0x0", "0x2")


def test_sbch_index_uses_native_query():
    txs = [make_tx("0x10"), make_tx("0x11")]
    transport = FakeTransport({"sbch_queryTxByAddr": txs})
    node = JsonRpcNode(transport, SbchAddressIndex())

    assert node.query_transactions_by_address_in_range(ADDRESS, "0x1", "0x20") == txs
    assert transport.calls == [("sbch_queryTxByAddr", [ADDRESS, "0x1", "0x20"])]


def test_sbch_index_treats_null_as_empty():
    node = JsonRpcNode(FakeTransport({"sbch_queryTxByAddr": None}), SbchAddressIndex())
    assert node.query_transactions_by_address_in_range(ADDRESS, "0x1", "0x20") == []


def test_log_index_synthesizes_history_from_logs():
    topic = address_topic(ADDRESS)
    emitted = [{"transactionHash": "0xc", "blockNumber": "0x30", "transactionIndex": "0x0"}]
    sent = [
        {"transactionHash": "0xa", "blockNumber": "0x10", "transactionIndex": "0x1"},
        {"transactionHash": "0xc", "blockNumber": "0x30", "transactionIndex": "0x0"},
    ]
    received = [{"transactionHash": "0xb", "blockNumber": "0x10", "transactionIndex": "0x0"}]

    def get_logs(params):
        log_filter = params[0]
        assert log_filter["fromBlock"] == "0x1"
        assert log_filter["toBlock"] == "0x40"
        if "address" in log_filter:
            return emitted
        if log_filter["topics"] == [None, topic]:
            return sent
        assert log_filter["topics"] == [None, None, topic]
        return received

    def get_tx(params):
        return {"hash": params[0]}

    transport = FakeTransport({"eth_getLogs": get_logs, "eth_getTransactionByHash": get_tx})
    node = JsonRpcNode(transport, LogAddressIndex())

    txs = node.query_transactions_by_address_in_range(ADDRESS, "0x1", "0x40")

    assert [tx["hash"] for tx in txs] == ["0xb", "0xa", "0xc"]
    fetched = [params[0] for method, params in transport.calls if method == "eth_getTransactionByHash"]
    assert fetched == ["0xb", "0xa", "0xc"]


def test_log_index_missing_transaction_is_transport_error():
    transport = FakeTransport({
        "eth_getLogs": [{"transactionHash": "0xa", "blockNumber": "0x1", "transactionIndex": "0x0"}],
        "eth_getTransactionByHash": None,
    })
    node = JsonRpcNode(transport, LogAddressIndex())
    with pytest.raises(TransportError):
        node.query_transactions_by_address_in_range(ADDRESS, "0x0", "0x2")


def test_close_releases_transport():
    transport = FakeTransport({})
    node = JsonRpcNode(transport)
    node.close()
    assert transport.closed is True
    assert node.is_connected() is False
