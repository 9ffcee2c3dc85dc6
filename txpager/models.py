from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Transaction(BaseModel):
    """
    A transaction as returned by the node, after normalization.
    Fields other than the ones declared here are kept as-is and show up again
    in as_dict().
    """
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    hash: str
    # strict: hex/decimal strings must be normalized before building the model
    block_number: int = Field(alias="blockNumber", strict=True)
    from_address: Optional[str] = Field(default=None, alias="from")
    to_address: Optional[str] = Field(default=None, alias="to")
    value: Any = None
    transaction_index: Optional[int] = Field(default=None, alias="transactionIndex", strict=True)

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SearchWindow(BaseModel):
    """Inclusive block range [scope_floor, upper_block] a scan may examine."""
    model_config = ConfigDict(frozen=True)

    upper_block: int = Field(ge=0)
    scope_floor: int = Field(ge=0)

    @classmethod
    def resolve(cls, upper_block: int, scope_size: Optional[int] = None) -> "SearchWindow":
        """
        Build the window for a start block and an optional scope size.
        A scope size of None or 0 means "search down to genesis".
        """
        scope_floor = max(0, upper_block - scope_size) if scope_size else 0
        return cls(upper_block=upper_block, scope_floor=scope_floor)

    def contains(self, block_number: int) -> bool:
        return self.scope_floor <= block_number <= self.upper_block


class PageRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = Field(min_length=1)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)
    search_from_block: Optional[int] = Field(default=None, ge=0)
    scope_size: Optional[int] = Field(default=None, ge=0)

    @property
    def start_index(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def end_index(self) -> int:
        return self.start_index + self.page_size


class PageResult(BaseModel):
    """
    One page of account transactions.
    total is only set when the scan covered the whole search window, so it is
    exact whenever it is present. None means "unknown", not "no more pages".
    """
    model_config = ConfigDict(populate_by_name=True)

    results: List[Transaction]
    page: int
    page_size: int = Field(alias="pageSize")
    is_empty: bool = Field(alias="isEmpty")
    total: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "results": [tx.as_dict() for tx in self.results],
            "page": self.page,
            "pageSize": self.page_size,
            "isEmpty": self.is_empty,
            "total": self.total,
        }
