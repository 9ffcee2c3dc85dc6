"""
Node clients.

NodeClient is the capability every backing node exposes. Chain families
differ mostly in how (and whether) they answer "transactions of an address
in a block range"; JsonRpcNode keeps the standard eth_* calls and delegates
that one query to an address index strategy picked at connection time.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi.exceptions import ABITypeError, DecodingError, ParseError

from txpager.errors import DecodeError, TransportError

logger = logging.getLogger(__name__)

BlockId = Union[int, str]

BLOCK_TAGS = {"latest", "earliest", "pending", "safe", "finalized"}
_BLOCK_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class NodeClient(Protocol):
    """Primitive calls against one blockchain node. Each call is one round trip."""

    def is_connected(self) -> bool: ...

    def current_height(self) -> int: ...

    def block_by_number(self, block_id: BlockId) -> Dict[str, Any]: ...

    def transactions_in_block(self, block_id: BlockId) -> List[Dict[str, Any]]: ...

    def transaction_by_hash(self, tx_hash: str) -> Dict[str, Any]: ...

    def transaction_receipt(self, tx_hash: str) -> Dict[str, Any]: ...

    def transaction_count(self, address: str) -> int: ...

    def balance(self, address: str) -> str: ...

    def code(self, address: str) -> str: ...

    def query_logs(
        self, address: Optional[str], topics: Sequence[Any], from_block: BlockId, to_block: BlockId
    ) -> List[Dict[str, Any]]: ...

    def call(self, tx_config: Dict[str, Any], return_type: str) -> Any: ...

    def query_transactions_by_address_in_range(
        self, address: str, from_block_hex: str, to_block_hex: str
    ) -> List[Dict[str, Any]]: ...


def parse_quantity(value: Any) -> int:
    """
    Turn a node quantity into an int.
    Accepts ints, hex strings ("0x1e8480") and decimal strings ("2000000").
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x":
            return int(text, 16)
        return int(text, 10)
    raise ValueError(f"Not a quantity: {value!r}")


def node_quantity(value: Any, what: str) -> int:
    """parse_quantity for values that came from a node: bad input is the node's fault."""
    try:
        return parse_quantity(value)
    except ValueError as e:
        raise TransportError(f"Node returned a malformed {what}: {str(value)[:100]!r}") from e


def to_block_hex(block_number: int) -> str:
    return hex(int(block_number))


def normalize_block_id(block_id: BlockId) -> str:
    """Render a height, tag or hex quantity as a JSON-RPC block parameter."""
    if isinstance(block_id, int) and not isinstance(block_id, bool):
        return to_block_hex(block_id)
    if isinstance(block_id, str):
        if block_id in BLOCK_TAGS or block_id.lower().startswith("0x"):
            return block_id
        if block_id.isdigit():
            return to_block_hex(int(block_id))
    raise ValueError(f"Invalid block id: {block_id!r}")


def is_block_hash(block_id: BlockId) -> bool:
    return isinstance(block_id, str) and bool(_BLOCK_HASH_RE.match(block_id))


def address_topic(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte log topic."""
    clean = address.lower().replace("0x", "")
    if len(clean) != 40:
        raise ValueError(f"Invalid address: {address}")
    return "0x" + clean.rjust(64, "0")


def decode_call_result(raw: Any, return_type: str) -> Any:
    """Decode the hex payload of an eth_call as a single ABI value."""
    if not isinstance(raw, str):
        raise DecodeError(f"Call returned no data to decode as {return_type}")
    try:
        data = bytes.fromhex(raw[2:] if raw[:2].lower() == "0x" else raw)
        return abi_decode([return_type], data)[0]
    except (DecodingError, ParseError, ABITypeError, ValueError) as e:
        raise DecodeError(f"Cannot decode call result as {return_type}: {str(e)[:200]}") from e


class SbchAddressIndex:
    """smartBCH nodes answer address history natively."""

    method = "sbch_queryTxByAddr"

    def fetch(self, rpc, address: str, from_block_hex: str, to_block_hex: str) -> List[Dict[str, Any]]:
        return rpc.request(self.method, [address, from_block_hex, to_block_hex]) or []


class LogAddressIndex:
    """
    Address history for nodes without a native query, built from eth_getLogs.

    Candidates are logs emitted by the address and logs carrying the address
    as topic 1 or topic 2 (e.g. ERC-20 Transfer from/to). Each distinct
    transaction is then fetched by hash. Plain value transfers that emit no
    log are not visible this way.
    """

    def fetch(self, rpc, address: str, from_block_hex: str, to_block_hex: str) -> List[Dict[str, Any]]:
        topic = address_topic(address)
        block_range = {"fromBlock": from_block_hex, "toBlock": to_block_hex}
        filters = [
            {**block_range, "address": address},
            {**block_range, "topics": [None, topic]},
            {**block_range, "topics": [None, None, topic]},
        ]

        positions: Dict[str, Tuple[int, int]] = {}
        for log_filter in filters:
            for log in rpc.request("eth_getLogs", [log_filter]) or []:
                tx_hash = log.get("transactionHash")
                if not tx_hash or tx_hash in positions:
                    continue
                positions[tx_hash] = (
                    node_quantity(log.get("blockNumber") or 0, "log blockNumber"),
                    node_quantity(log.get("transactionIndex") or 0, "log transactionIndex"),
                )

        logger.debug("[Node] %d candidate txs from logs in %s-%s", len(positions), from_block_hex, to_block_hex)
        txs = []
        for tx_hash in sorted(positions, key=lambda h: positions[h]):
            tx = rpc.request("eth_getTransactionByHash", [tx_hash])
            if tx is None:
                raise TransportError(f"Node has logs but no transaction for {tx_hash}")
            txs.append(tx)
        return txs


class JsonRpcNode:
    """NodeClient over a JSON-RPC transport (HTTP or WebSocket)."""

    def __init__(self, transport, address_index=None):
        self.transport = transport
        self.address_index = address_index or LogAddressIndex()

    def is_connected(self) -> bool:
        return self.transport is not None

    def _rpc(self, method: str, params: List[Any]) -> Any:
        return self.transport.request(method, params)

    def current_height(self) -> int:
        return node_quantity(self._rpc("eth_blockNumber", []), "eth_blockNumber result")

    def _get_block(self, block_id: BlockId, full: bool) -> Dict[str, Any]:
        if is_block_hash(block_id):
            block = self._rpc("eth_getBlockByHash", [block_id, full])
        else:
            block = self._rpc("eth_getBlockByNumber", [normalize_block_id(block_id), full])
        if block is None:
            raise TransportError(f"Block {block_id} not found")
        return block

    def block_by_number(self, block_id: BlockId) -> Dict[str, Any]:
        return self._get_block(block_id, False)

    def transactions_in_block(self, block_id: BlockId) -> List[Dict[str, Any]]:
        return self._get_block(block_id, True).get("transactions", [])

    def transaction_by_hash(self, tx_hash: str) -> Dict[str, Any]:
        return self._rpc("eth_getTransactionByHash", [tx_hash])

    def transaction_receipt(self, tx_hash: str) -> Dict[str, Any]:
        return self._rpc("eth_getTransactionReceipt", [tx_hash])

    def transaction_count(self, address: str) -> int:
        raw = self._rpc("eth_getTransactionCount", [address, "latest"])
        return node_quantity(raw, "eth_getTransactionCount result")

    def balance(self, address: str) -> str:
        return str(node_quantity(self._rpc("eth_getBalance", [address, "latest"]), "eth_getBalance result"))

    def code(self, address: str) -> str:
        return self._rpc("eth_getCode", [address, "latest"])

    def query_logs(
        self, address: Optional[str], topics: Sequence[Any], from_block: BlockId, to_block: BlockId
    ) -> List[Dict[str, Any]]:
        log_filter: Dict[str, Any] = {
            "fromBlock": normalize_block_id(from_block),
            "toBlock": normalize_block_id(to_block),
            "topics": list(topics),
        }
        if address:
            log_filter["address"] = address
        return self._rpc("eth_getLogs", [log_filter]) or []

    def call(self, tx_config: Dict[str, Any], return_type: str) -> Any:
        raw = self._rpc("eth_call", [tx_config, "latest"])
        return decode_call_result(raw, return_type)

    def query_transactions_by_address_in_range(
        self, address: str, from_block_hex: str, to_block_hex: str
    ) -> List[Dict[str, Any]]:
        return self.address_index.fetch(self.transport, address, from_block_hex, to_block_hex)

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()
            self.transport = None
