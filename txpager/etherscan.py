import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from requests import exceptions as req_exc

from txpager.errors import TransportError
from txpager.node import (
    BLOCK_TAGS,
    BlockId,
    decode_call_result,
    is_block_hash,
    node_quantity,
    normalize_block_id,
    parse_quantity,
)

logger = logging.getLogger(__name__)

ETHERSCAN_V2_URL = "https://api.etherscan.io/v2/api"

# Etherscan caps account endpoints at ~10,000 records per query (page * offset)
MAX_RECORDS_PER_QUERY = 10000

EMPTY_RESULT_MESSAGES = ("no transactions found", "no records found")


def _block_param(block_id: BlockId):
    """Etherscan takes decimal heights or a tag for log ranges."""
    if isinstance(block_id, str) and block_id in BLOCK_TAGS:
        return block_id
    return parse_quantity(block_id)


class EtherscanNode:
    """
    NodeClient backed by the Etherscan v2 API.
    eth_* calls go through the proxy module, address history through
    account/txlist. Every call is a single GET: errors are raised, not retried.
    """

    def __init__(
        self,
        api_key: str,
        chain_id: int = 1,
        timeout: float = 30.0,
        base_url: str = ETHERSCAN_V2_URL,
        offset: int = MAX_RECORDS_PER_QUERY,
    ):
        self.api_key = api_key
        self.chain_id = chain_id
        self.timeout = timeout
        self.base_url = base_url
        self.offset = offset

    def is_connected(self) -> bool:
        return bool(self.api_key)

    def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a GET request to the Etherscan API and return the decoded JSON.
        Rate limiting, HTTP errors and JSON-RPC errors from the proxy module
        are raised as TransportError. NOTOK statuses are left to the caller
        since some of them just mean "empty".
        """
        full_params = {
            "chainid": self.chain_id,
            "apikey": self.api_key,
            **params
        }

        try:
            r = requests.get(self.base_url, params=full_params, timeout=self.timeout)
            r.raise_for_status()
        except req_exc.Timeout as e:
            raise TransportError(f"Etherscan request timed out after {self.timeout}s") from e
        except req_exc.HTTPError as e:
            if e.response is not None and e.response.status_code == 429:
                raise TransportError("Etherscan returned HTTP 429 (Too Many Requests)") from e
            raise TransportError(f"Etherscan request failed: {str(e)[:200]}") from e
        except req_exc.RequestException as e:
            raise TransportError(f"Etherscan connection failed: {str(e)[:200]}") from e

        try:
            json_data = r.json()
        except ValueError as e:
            raise TransportError(f"Etherscan API returned invalid JSON: {r.text[:200]}") from e

        if not isinstance(json_data, dict):
            raise TransportError(f"Unexpected Etherscan response: {str(json_data)[:200]}")

        status = json_data.get("status")
        message = str(json_data.get("message", "")).lower()
        result = json_data.get("result", "")

        is_rate_limit = (
            status == "0" and (
                "rate limit" in message or
                "busy" in message or
                (isinstance(result, str) and ("rate limit" in result.lower() or "busy" in result.lower()))
            )
        )
        if is_rate_limit:
            logger.warning("[Etherscan] Rate limit hit for %s/%s", params.get("module"), params.get("action"))
            raise TransportError(f"Etherscan rate limit: {result if isinstance(result, str) else message}")

        if json_data.get("error") is not None:
            raise TransportError(f"Etherscan RPC error: {json_data['error']}")

        return json_data

    def _proxy(self, action: str, **params) -> Any:
        data = self._get({"module": "proxy", "action": action, **params})
        if data.get("status") == "0":
            raise TransportError(f"Etherscan proxy {action} failed: {str(data.get('result'))[:200]}")
        return data.get("result")

    def _records(self, data: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
        """Result list of an account/logs response; "nothing found" is an empty list."""
        if data.get("status") == "1":
            return data.get("result") or []
        message = str(data.get("message", "")).lower()
        if any(m in message for m in EMPTY_RESULT_MESSAGES):
            return []
        raise TransportError(f"Etherscan {what} failed: {data.get('message')} {str(data.get('result'))[:200]}")

    def current_height(self) -> int:
        """Get the latest block number."""
        return node_quantity(self._proxy("eth_blockNumber"), "eth_blockNumber result")

    def _get_block(self, block_id: BlockId, full: bool) -> Dict[str, Any]:
        if is_block_hash(block_id):
            raise ValueError("Etherscan cannot fetch blocks by hash")
        block = self._proxy(
            "eth_getBlockByNumber",
            tag=normalize_block_id(block_id),
            boolean="true" if full else "false",
        )
        if block is None:
            raise TransportError(f"Block {block_id} not found")
        return block

    def block_by_number(self, block_id: BlockId) -> Dict[str, Any]:
        return self._get_block(block_id, False)

    def transactions_in_block(self, block_id: BlockId) -> List[Dict[str, Any]]:
        return self._get_block(block_id, True).get("transactions", [])

    def transaction_by_hash(self, tx_hash: str) -> Dict[str, Any]:
        return self._proxy("eth_getTransactionByHash", txhash=tx_hash)

    def transaction_receipt(self, tx_hash: str) -> Dict[str, Any]:
        return self._proxy("eth_getTransactionReceipt", txhash=tx_hash)

    def transaction_count(self, address: str) -> int:
        raw = self._proxy("eth_getTransactionCount", address=address, tag="latest")
        return node_quantity(raw, "eth_getTransactionCount result")

    def balance(self, address: str) -> str:
        """ETH balance in wei, as a decimal string."""
        data = self._get({
            "module": "account",
            "action": "balance",
            "address": address,
            "tag": "latest"
        })
        if data.get("status") != "1":
            raise TransportError(f"Etherscan balance failed: {data.get('message')}")
        return str(data.get("result", "0"))

    def code(self, address: str) -> str:
        return self._proxy("eth_getCode", address=address, tag="latest")

    def call(self, tx_config: Dict[str, Any], return_type: str) -> Any:
        raw = self._proxy("eth_call", to=tx_config.get("to"), data=tx_config.get("data", "0x"), tag="latest")
        return decode_call_result(raw, return_type)

    def query_logs(
        self, address: Optional[str], topics: Sequence[Any], from_block: BlockId, to_block: BlockId
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "module": "logs",
            "action": "getLogs",
            "fromBlock": _block_param(from_block),
            "toBlock": _block_param(to_block),
        }
        if address:
            params["address"] = address

        present = []
        for i, topic in enumerate(list(topics)[:4]):
            if topic is not None:
                params[f"topic{i}"] = topic
                present.append(i)
        for a, b in zip(present, present[1:]):
            params[f"topic{a}_{b}_opr"] = "and"

        return self._records(self._get(params), "getLogs")

    def txlist_range(
        self,
        address: str,
        start_block: int,
        end_block: int,
        page: int = 1,
        offset: int = MAX_RECORDS_PER_QUERY
    ) -> Dict[str, Any]:
        """Get transaction list for an address in a block range."""
        return self._get({
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": start_block,
            "endblock": end_block,
            "page": page,
            "offset": offset,
            "sort": "asc"
        })

    def txlist_page(self, address: str, start_block: int, end_block: int, offset: int) -> List[Dict[str, Any]]:
        """
        Get the first page of transactions for an address in a block range.
        Returns the list of transactions (not the full API response dict).
        Does NOT do splitting - just one API call.
        """
        data = self.txlist_range(address, start_block, end_block, 1, offset)
        return self._records(data, "txlist")

    def query_transactions_by_address_in_range(
        self, address: str, from_block_hex: str, to_block_hex: str
    ) -> List[Dict[str, Any]]:
        start_block = parse_quantity(from_block_hex)
        end_block = parse_quantity(to_block_hex)
        return crawl_all_by_block_splitting(self.txlist_page, address, start_block, end_block, self.offset)


def crawl_all_by_block_splitting(
    fetch_fn: Callable[[str, int, int, int], List[Dict[str, Any]]],
    address: str,
    start_block: int,
    end_block: int,
    offset: int = MAX_RECORDS_PER_QUERY
) -> List[Dict[str, Any]]:
    """
    Fetch all transactions in [start_block, end_block] by splitting the block
    range in half whenever a query comes back full.
    Deduplicates by transaction hash.
    """
    all_txs: Dict[str, Dict[str, Any]] = {}

    def fetch_range(sb: int, eb: int):
        results = fetch_fn(address, sb, eb, offset)

        if len(results) >= offset:
            if eb > sb:
                mid = (sb + eb) // 2
                logger.info("[Etherscan] Cap hit for %s-%s, splitting at %s", sb, eb, mid)
                fetch_range(sb, mid)
                fetch_range(mid + 1, eb)
                return
            raise TransportError(
                f"Block {sb} holds more than {offset} transactions for {address}; "
                f"cannot list them all through Etherscan"
            )

        for tx in results:
            tx_hash = tx.get("hash")
            if tx_hash:
                all_txs[tx_hash] = tx

    fetch_range(start_block, end_block)

    # Return as list sorted by block number
    return sorted(all_txs.values(), key=lambda x: node_quantity(x.get("blockNumber", 0), "txlist blockNumber"))
