import itertools
import json
import logging
import threading
from typing import Any, List, Optional

import requests
import websocket
from requests import exceptions as req_exc

from txpager.endpoint import TransportKind, classify_endpoint
from txpager.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def unwrap_response(method: str, data: Any) -> Any:
    """Return the result member of a JSON-RPC response, or raise TransportError."""
    if not isinstance(data, dict):
        raise TransportError(f"Malformed JSON-RPC response for {method}: {str(data)[:200]}")
    if data.get("error") is not None:
        raise TransportError(f"RPC error ({method}): {data['error']}")
    if "result" not in data:
        raise TransportError(f"JSON-RPC response for {method} has no result")
    return data["result"]


class HttpTransport:
    """JSON-RPC over HTTP POST. One pooled session, no retries."""

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def request(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
        except req_exc.Timeout as e:
            raise TransportError(f"{method} timed out after {self.timeout}s") from e
        except req_exc.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise TransportError(f"{method} failed with HTTP {status}") from e
        except req_exc.RequestException as e:
            raise TransportError(f"{method} failed: {str(e)[:200]}") from e

        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"{method} returned invalid JSON: {r.text[:200]}") from e

        return unwrap_response(method, data)

    def close(self) -> None:
        self.session.close()


class WebSocketTransport:
    """
    JSON-RPC over a persistent WebSocket.
    The socket is opened on first use and dropped after any failure so the
    next request reconnects. Requests are serialized: one in flight at a time.
    """

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout
        self._ws = None
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def _connect(self):
        if self._ws is None:
            logger.info("[Transport] Opening websocket %s", self.url)
            self._ws = websocket.create_connection(self.url, timeout=self.timeout)
        return self._ws

    def _drop(self) -> None:
        if self._ws is not None:
            try:
                self._ws.close()
            except (websocket.WebSocketException, OSError):
                logger.debug("[Transport] Error while closing websocket", exc_info=True)
            self._ws = None

    def request(self, method: str, params: List[Any]) -> Any:
        request_id = next(self._ids)
        payload = json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})

        with self._lock:
            try:
                ws = self._connect()
                ws.send(payload)
                while True:
                    data = json.loads(ws.recv())
                    # Skip subscription notifications and stale replies
                    if isinstance(data, dict) and data.get("id") == request_id:
                        break
            except websocket.WebSocketTimeoutException as e:
                self._drop()
                raise TransportError(f"{method} timed out after {self.timeout}s") from e
            except (websocket.WebSocketException, OSError) as e:
                self._drop()
                raise TransportError(f"{method} failed: {str(e)[:200]}") from e
            except ValueError as e:
                self._drop()
                raise TransportError(f"{method} returned invalid JSON") from e

        return unwrap_response(method, data)

    def close(self) -> None:
        with self._lock:
            self._drop()


def open_transport(url: str, timeout: float = DEFAULT_TIMEOUT):
    """Build the transport matching the endpoint scheme."""
    kind = classify_endpoint(url)
    if kind is TransportKind.WS:
        return WebSocketTransport(url, timeout=timeout)
    return HttpTransport(url, timeout=timeout)
