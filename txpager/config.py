import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from txpager.scanner import DEFAULT_CHUNK_SIZE
from txpager.transport import DEFAULT_TIMEOUT

load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    node_endpoint: Optional[str]
    node_dialect: str = "web3"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    rpc_timeout: float = DEFAULT_TIMEOUT
    scan_deadline: Optional[float] = None  # seconds per page request
    etherscan_api_key: Optional[str] = None
    chain_id: int = 1
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def get_settings() -> Settings:
    """Read settings from the environment (and .env, loaded at import)."""
    return Settings(
        node_endpoint=os.getenv("NODE_ENDPOINT") or None,
        node_dialect=os.getenv("NODE_DIALECT", "web3").strip().lower(),
        chunk_size=int(os.getenv("SCAN_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
        rpc_timeout=float(os.getenv("RPC_TIMEOUT", str(DEFAULT_TIMEOUT))),
        scan_deadline=_optional_float("SCAN_DEADLINE"),
        etherscan_api_key=os.getenv("ETHERSCAN_API_KEY") or None,
        chain_id=int(os.getenv("CHAIN_ID", "1")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
