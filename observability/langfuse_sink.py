"""
Langfuse Trace Sink

Ships buffered ingestion events to the Langfuse public ingestion API.

DESIGN RULES (NON-NEGOTIABLE):
- HTTP POST only (no reads)
- One shared httpx.AsyncClient per process (connection pooling)
- Short timeout
- Never raise exceptions
- Log failures as warnings only

This module exists solely to forward facts about requests.
It must NEVER influence a request or delay its response.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from observability.sink import TraceSink


logger = logging.getLogger(__name__)


INGESTION_PATH = "/api/public/ingestion"
DEFAULT_HOST = "https://cloud.langfuse.com"
DEFAULT_TIMEOUT_MS = 5000
MAX_BATCH_SIZE = 100


class LangfuseTraceSink(TraceSink):
    """
    Buffers events and POSTs them in batches.

    Safe to flush concurrently from many in-flight requests: each flush
    takes ownership of the events buffered so far and sends them in its
    own request. Nothing else is shared besides the client's pool.
    """

    def __init__(
        self,
        public_key: str,
        secret_key: str,
        host: str = DEFAULT_HOST,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        client: Optional[httpx.AsyncClient] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ):
        """
        Initialize the sink.

        Args:
            public_key: Langfuse public key (basic auth user)
            secret_key: Langfuse secret key (basic auth password)
            host: Langfuse base URL
            timeout_ms: Per-request timeout
            client: Pre-built client (tests inject one with a mock transport)
            max_batch_size: Events per POST
        """
        self._url = f"{host.rstrip('/')}{INGESTION_PATH}"
        self._auth = httpx.BasicAuth(public_key, secret_key)
        self._timeout = timeout_ms / 1000.0
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = client is None
        self._max_batch_size = max_batch_size
        self._buffer: List[Dict[str, Any]] = []

    @property
    def pending(self) -> int:
        """Number of events waiting for the next flush."""
        return len(self._buffer)

    def emit(self, event: Dict[str, Any]) -> None:
        self._buffer.append(event)

    async def flush(self) -> None:
        """
        POST everything buffered so far.

        GUARANTEES:
        - Never raises exceptions
        - Returns within timeout per batch
        - Logs failures as warnings
        """
        if not self._buffer:
            return

        # Take ownership before the first await so concurrent flushes never resend.
        events, self._buffer = self._buffer, []

        for start in range(0, len(events), self._max_batch_size):
            await self._post(events[start:start + self._max_batch_size])

    async def shutdown(self) -> None:
        await self.flush()
        if self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"[LANGFUSE] Failed to close client: {e}")

    async def _post(self, batch: List[Dict[str, Any]]) -> None:
        try:
            response = await self._client.post(
                self._url,
                json={"batch": batch},
                auth=self._auth,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning(f"[LANGFUSE] Timeout sending {len(batch)} events")
            return
        except httpx.HTTPError as e:
            logger.warning(f"[LANGFUSE] Failed to send {len(batch)} events: {e}")
            return
        except Exception as e:
            logger.warning(f"[LANGFUSE] Unexpected error sending {len(batch)} events: {e}")
            return

        if response.status_code == 207:
            self._log_partial_failure(response)
        elif response.status_code >= 300:
            logger.warning(
                f"[LANGFUSE] Ingestion rejected {len(batch)} events: HTTP {response.status_code}"
            )
        else:
            logger.debug(f"[LANGFUSE] Sent {len(batch)} events")

    def _log_partial_failure(self, response: httpx.Response) -> None:
        try:
            errors = response.json().get("errors", [])
        except ValueError:
            errors = []
        for error in errors:
            logger.warning(
                f"[LANGFUSE] Event {error.get('id')} rejected: "
                f"{error.get('status')} {error.get('message')}"
            )
