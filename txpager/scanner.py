"""
Account transaction scanner.

Nodes cannot list the transactions of an address directly, so a page is
built by walking the search window downward in fixed-size block chunks,
newest first, until enough candidates are collected for the requested page
or the window is exhausted. Candidates are then sorted newest first and the
page is sliced out of them.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from txpager.errors import NoBackingConnection, ScanCancelled, TransportError
from txpager.models import PageRequest, PageResult, SearchWindow, Transaction
from txpager.node import parse_quantity, to_block_hex

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100000  # max block range per request


def iter_chunks(window: SearchWindow, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """
    Yield inclusive (from_block, to_block) ranges covering the window from
    its upper block down to its floor. Consecutive ranges touch without
    overlapping, and the last one starts exactly at the floor.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    to_block = window.upper_block
    while to_block >= window.scope_floor:
        from_block = max(window.scope_floor, to_block - chunk_size + 1)
        yield from_block, to_block
        to_block = from_block - 1


def normalize_transaction(raw: Dict[str, Any]) -> Transaction:
    """Build a Transaction, converting string block numbers/indexes to int."""
    fields = dict(raw)
    try:
        for key in ("blockNumber", "transactionIndex"):
            value = fields.get(key)
            if isinstance(value, str):
                fields[key] = parse_quantity(value)
        return Transaction.model_validate(fields)
    except (ValidationError, ValueError) as e:
        raise TransportError(f"Node returned a malformed transaction: {str(raw)[:200]}") from e


def sort_key(tx: Transaction) -> Tuple[int, int, str]:
    # Sorted in reverse: newest block first, then highest index in the block.
    # Transactions without an index go after indexed ones of the same block.
    index = tx.transaction_index if tx.transaction_index is not None else -1
    return tx.block_number, index, tx.hash


class AccountTransactionScanner:
    def __init__(self, node, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.node = node
        self.chunk_size = chunk_size

    def search_window(self, search_from_block: Optional[int], scope_size: Optional[int]) -> SearchWindow:
        upper_block = search_from_block
        if upper_block is None:
            upper_block = self.node.current_height()
        return SearchWindow.resolve(upper_block, scope_size)

    def get_transactions_by_account(
        self,
        address: str,
        page: int,
        page_size: int,
        search_from_block: Optional[int] = None,
        scope_size: Optional[int] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        deadline: Optional[float] = None,
    ) -> PageResult:
        """
        Get one page of transactions for an account, newest first.

        search_from_block defaults to the current chain height. scope_size
        limits how many blocks below it are searched; None or 0 searches down
        to genesis. should_stop and deadline (a time.monotonic() value) are
        checked between chunks and abort the scan with ScanCancelled.
        """
        request = PageRequest(
            address=address,
            page=page,
            page_size=page_size,
            search_from_block=search_from_block,
            scope_size=scope_size,
        )
        return self.scan(request, should_stop=should_stop, deadline=deadline)

    def scan(
        self,
        request: PageRequest,
        should_stop: Optional[Callable[[], bool]] = None,
        deadline: Optional[float] = None,
    ) -> PageResult:
        if self.node is None or not self.node.is_connected():
            raise NoBackingConnection("No node connection to scan with")

        window = self.search_window(request.search_from_block, request.scope_size)
        start_index = request.start_index
        end_index = request.end_index

        found: List[Dict[str, Any]] = []
        exhausted = False

        for from_block, to_block in iter_chunks(window, self.chunk_size):
            if should_stop is not None and should_stop():
                raise ScanCancelled(f"Scan stopped before block range {from_block}-{to_block}")
            if deadline is not None and time.monotonic() >= deadline:
                raise ScanCancelled(f"Scan deadline passed before block range {from_block}-{to_block}")

            logger.info("[Scanner] Fetching txs from block %d to %d", from_block, to_block)
            chunk = self.node.query_transactions_by_address_in_range(
                request.address,
                to_block_hex(from_block),
                to_block_hex(to_block),
            )
            if chunk:
                found.extend(chunk)
                logger.info("[Scanner] Found %d transactions", len(found))

            exhausted = from_block <= window.scope_floor
            if len(found) >= end_index:
                break

        txs = sorted((normalize_transaction(tx) for tx in found), key=sort_key, reverse=True)
        results = txs[start_index:end_index]

        return PageResult(
            results=results,
            page=request.page,
            page_size=request.page_size,
            is_empty=len(results) == 0,
            total=len(txs) if exhausted else None,
        )
