"""Async client for an Ollama-compatible text-generation endpoint."""
import logging
from typing import Any, Dict, Optional

import httpx

from notegraph.config import NotegraphConfig
from notegraph.exceptions import UpstreamError, UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)


class GenerationClient:
    """Calls ``POST {base_url}/api/generate`` with ``stream: false``.

    Every call carries its own timeout, and cancelling the awaiting task
    aborts the request. Nothing here holds a store lock or retries.

    Args:
        base_url: Root URL of the generation server.
        model: Model identifier sent with each request.
        timeout: Default timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: NotegraphConfig, **kwargs: Any) -> "GenerationClient":
        return cls(
            base_url=config.ollama_url,
            model=config.ollama_model,
            timeout=config.generation_timeout,
            **kwargs,
        )

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/api/generate"

    async def generate(self, prompt: str, timeout: Optional[float] = None) -> str:
        """Send ``prompt`` and return the generated text.

        Raises:
            UpstreamTimeout: The server did not answer within the timeout.
            UpstreamUnavailable: The server could not be reached.
            UpstreamError: The server answered with a non-success status
                or an unreadable body.
        """
        timeout = timeout if timeout is not None else self.timeout
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport
            ) as client:
                response = await client.post(self.generate_url, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Generation request timed out after {timeout}s")
            raise UpstreamTimeout(timeout, url=self.generate_url, original_error=e) from e
        except httpx.RequestError as e:
            logger.warning(f"Failed to reach generation server: {e}")
            raise UpstreamUnavailable(
                "Failed to reach generation server",
                url=self.generate_url,
                original_error=e,
            ) from e

        if not response.is_success:
            logger.warning(f"Generation server returned {response.status_code}")
            raise UpstreamError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, "Response body is not JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, "Response body is not a JSON object")

        return data.get("response") or ""
