import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from txpager.endpoint import classify_endpoint
from txpager.errors import NotInitialized
from txpager.etherscan import ETHERSCAN_V2_URL, EtherscanNode
from txpager.models import PageResult
from txpager.node import BlockId, JsonRpcNode, LogAddressIndex, SbchAddressIndex
from txpager.scanner import DEFAULT_CHUNK_SIZE, AccountTransactionScanner
from txpager.transport import DEFAULT_TIMEOUT, open_transport

logger = logging.getLogger(__name__)

DIALECTS = ("web3", "sbch", "etherscan")


class NodeAdapter:
    """
    Connection holder in front of one backing node.
    Every node call raises NotInitialized until init() succeeded.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        etherscan_api_key: Optional[str] = None,
        chain_id: int = 1,
    ):
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.etherscan_api_key = etherscan_api_key
        self.chain_id = chain_id
        self.node = None
        self.endpoint: Optional[str] = None

    def _build_node(self, endpoint: str, dialect: str):
        if dialect == "etherscan":
            if not self.etherscan_api_key:
                raise ValueError("ETHERSCAN_API_KEY is required for the etherscan dialect")
            classify_endpoint(endpoint)
            return EtherscanNode(self.etherscan_api_key, self.chain_id, timeout=self.timeout, base_url=endpoint)

        address_index = SbchAddressIndex() if dialect == "sbch" else LogAddressIndex()
        return JsonRpcNode(open_transport(endpoint, timeout=self.timeout), address_index)

    def init(self, endpoint: str, dialect: str = "web3") -> bool:
        """Connect to a node. Any previous connection is closed first."""
        if dialect not in DIALECTS:
            raise ValueError(f"Unknown node dialect '{dialect}', expected one of {', '.join(DIALECTS)}")
        if not endpoint and dialect == "etherscan":
            endpoint = ETHERSCAN_V2_URL

        logger.info("[Node Adapter] Initializing %s node at %s", dialect, endpoint)
        self.close()
        try:
            self.node = self._build_node(endpoint, dialect)
        except ValueError:
            logger.error("[Node Adapter] Error connecting to node %s", endpoint)
            raise

        self.endpoint = endpoint
        return True

    def close(self) -> None:
        if self.node is not None and hasattr(self.node, "close"):
            self.node.close()
        self.node = None
        self.endpoint = None

    def is_connected(self) -> bool:
        return self.node is not None and self.node.is_connected()

    def _require_node(self):
        if not self.is_connected():
            raise NotInitialized("Node adapter is not initialized")
        return self.node

    def current_height(self) -> int:
        return self._require_node().current_height()

    def block_by_number(self, block_id: BlockId) -> Dict[str, Any]:
        return self._require_node().block_by_number(block_id)

    def transactions_in_block(self, block_id: BlockId) -> List[Dict[str, Any]]:
        return self._require_node().transactions_in_block(block_id)

    def transaction_by_hash(self, tx_hash: str) -> Dict[str, Any]:
        return self._require_node().transaction_by_hash(tx_hash)

    def transaction_receipt(self, tx_hash: str) -> Dict[str, Any]:
        return self._require_node().transaction_receipt(tx_hash)

    def transaction_count(self, address: str) -> int:
        return self._require_node().transaction_count(address)

    def balance(self, address: str) -> str:
        return self._require_node().balance(address)

    def code(self, address: str) -> str:
        return self._require_node().code(address)

    def query_logs(
        self, address: Optional[str], topics: Sequence[Any], from_block: BlockId, to_block: BlockId
    ) -> List[Dict[str, Any]]:
        return self._require_node().query_logs(address, topics, from_block, to_block)

    def call(self, tx_config: Dict[str, Any], return_type: str) -> Any:
        return self._require_node().call(tx_config, return_type)

    def query_transactions_by_address_in_range(
        self, address: str, from_block_hex: str, to_block_hex: str
    ) -> List[Dict[str, Any]]:
        return self._require_node().query_transactions_by_address_in_range(address, from_block_hex, to_block_hex)

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
        Gets txs for an account, newest first.
        search_from_block defaults to the latest block, scope_size (how many
        blocks deep to search) defaults to the full chain.
        """
        scanner = AccountTransactionScanner(self, chunk_size=self.chunk_size)
        return scanner.get_transactions_by_account(
            address,
            page,
            page_size,
            search_from_block=search_from_block,
            scope_size=scope_size,
            should_stop=should_stop,
            deadline=deadline,
        )
