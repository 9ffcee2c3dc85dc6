import csv
import io
import logging
import re
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from txpager.adapter import NodeAdapter
from txpager.config import configure_logging, get_settings
from txpager.errors import DecodeError, NotInitialized, ScanCancelled, TransportError
from txpager.models import PageResult, Transaction

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)

app = FastAPI(title="txpager")

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
MAX_PAGE_SIZE = 1000

adapter = NodeAdapter(
    chunk_size=settings.chunk_size,
    timeout=settings.rpc_timeout,
    etherscan_api_key=settings.etherscan_api_key,
    chain_id=settings.chain_id,
)
if settings.node_endpoint or settings.node_dialect == "etherscan":
    try:
        adapter.init(settings.node_endpoint or "", settings.node_dialect)
    except ValueError as e:
        logger.error("[API] Node not initialized: %s", e)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.exception_handler(NotInitialized)
def handle_not_initialized(request: Request, exc: NotInitialized):
    return _error(503, exc)


@app.exception_handler(TransportError)
def handle_transport_error(request: Request, exc: TransportError):
    logger.warning("[API] Node call failed for %s: %s", request.url.path, exc)
    return _error(502, exc)


@app.exception_handler(DecodeError)
def handle_decode_error(request: Request, exc: DecodeError):
    return _error(422, exc)


@app.exception_handler(ScanCancelled)
def handle_scan_cancelled(request: Request, exc: ScanCancelled):
    return _error(504, exc)


@app.exception_handler(ValueError)
def handle_value_error(request: Request, exc: ValueError):
    return _error(400, exc)


def check_address(address: str) -> None:
    if not ADDRESS_RE.match(address):
        raise ValueError("Invalid address. Must be 0x followed by 40 hex characters.")


def tx_direction(tx: Transaction, address: str) -> str:
    address_lower = address.lower()
    if (tx.from_address or "").lower() == address_lower:
        return "OUT"
    if (tx.to_address or "").lower() == address_lower:
        return "IN"
    return "UNKNOWN"


def fetch_page(
    address: str,
    page: int,
    page_size: int,
    search_from_block: Optional[int],
    scope_size: Optional[int],
) -> PageResult:
    check_address(address)
    deadline = time.monotonic() + settings.scan_deadline if settings.scan_deadline else None
    return adapter.get_transactions_by_account(
        address,
        page,
        page_size,
        search_from_block=search_from_block,
        scope_size=scope_size,
        deadline=deadline,
    )


@app.get("/health")
def health():
    return {"status": "ok", "connected": adapter.is_connected()}


@app.get("/blocks/latest")
def latest_block():
    return {"height": adapter.current_height()}


@app.get("/tx/{tx_hash}")
def transaction(tx_hash: str):
    tx = adapter.transaction_by_hash(tx_hash)
    if tx is None:
        return JSONResponse(status_code=404, content={"error": f"Transaction {tx_hash} not found"})
    return tx


@app.get("/accounts/{address}/balance")
def balance(address: str):
    check_address(address)
    return {"address": address, "balance": adapter.balance(address)}


@app.get("/accounts/{address}/transactions")
def account_transactions(
    address: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=MAX_PAGE_SIZE),
    search_from_block: Optional[int] = Query(None, ge=0),
    scope_size: Optional[int] = Query(None, ge=0),
):
    """Return one page of account transactions, newest first."""
    result = fetch_page(address, page, page_size, search_from_block, scope_size)
    return result.as_dict()


@app.get("/accounts/{address}/transactions.csv")
def download_account_transactions(
    address: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=MAX_PAGE_SIZE),
    search_from_block: Optional[int] = Query(None, ge=0),
    scope_size: Optional[int] = Query(None, ge=0),
):
    """
    Download one page of account transactions as CSV.
    The scan runs before streaming starts, so node errors still map to a
    proper status code instead of a truncated file.
    """
    result = fetch_page(address, page, page_size, search_from_block, scope_size)
    filename = f"txs_{address}_page{page}.csv"

    def generate_csv():
        output = io.StringIO()
        writer = csv.writer(output)

        writer.writerow(["block", "direction", "from", "to", "value", "hash"])
        yield output.getvalue()
        output.seek(0)
        output.truncate(0)

        for tx in result.results:
            writer.writerow([
                tx.block_number,
                tx_direction(tx, address),
                tx.from_address or "",
                tx.to_address or "",
                tx.value if tx.value is not None else "",
                tx.hash
            ])
            yield output.getvalue()
            output.seek(0)
            output.truncate(0)

    return StreamingResponse(
        generate_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


def serve() -> None:
    """Run the API with uvicorn on HOST:PORT."""
    uvicorn.run("txpager.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
