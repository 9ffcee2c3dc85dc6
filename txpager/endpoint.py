from enum import Enum

from txpager.errors import UnknownTransport


class TransportKind(str, Enum):
    HTTP = "http"
    WS = "ws"


_SCHEMES = {
    "http://": TransportKind.HTTP,
    "https://": TransportKind.HTTP,
    "ws://": TransportKind.WS,
    "wss://": TransportKind.WS,
}


def classify_endpoint(url: str) -> TransportKind:
    """Pick the transport for a node URL from its scheme."""
    if not url:
        raise UnknownTransport("Empty node endpoint")

    lowered = url.strip().lower()
    for prefix, kind in _SCHEMES.items():
        if lowered.startswith(prefix):
            return kind

    raise UnknownTransport(f"Unsupported node endpoint scheme: {url}")
