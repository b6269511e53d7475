"""Speech synthesis over the TTS HTTP API with retry logic."""

import asyncio
import logging

import httpx

from voicemark.constants import (
    CLOUD_API_URL,
    LOCAL_API_PATH,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
)
from voicemark.errors import MissingApiKeyError, SynthesisError

logger = logging.getLogger(__name__)


def endpoint(settings) -> str:
    if settings.use_local_api:
        return settings.local_api_url.rstrip("/") + LOCAL_API_PATH
    return CLOUD_API_URL


def request_headers(settings) -> dict:
    """Headers for the selected backend; the cloud backend needs an API key."""
    headers = {"Content-Type": "application/json"}
    if settings.use_local_api:
        return headers
    if not settings.api_key:
        raise MissingApiKeyError("No API key set for the cloud TTS backend")
    headers["X-API-Key"] = settings.api_key
    return headers


class Synthesizer:
    """Posts synthesis payloads and returns the audio bytes.

    No request timeout is applied: a slow answer only holds up the segment
    waiting for it.
    """

    def __init__(
        self,
        settings,
        client: httpx.AsyncClient | None = None,
        retries: int = TTS_RETRY_COUNT,
        retry_delay: float = TTS_RETRY_BASE_DELAY,
    ):
        self.settings = settings
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def synthesize(self, payload: dict) -> bytes:
        """POST one payload. Retries on transport errors with exponential backoff.

        Raises SynthesisError on an error status or once retries run out, and
        MissingApiKeyError before sending anything if the key is missing.
        """
        headers = request_headers(self.settings)
        url = endpoint(self.settings)

        last_error = None
        for attempt in range(self.retries):
            try:
                response = await self.client.post(url, json=payload, headers=headers)
            except httpx.TransportError as e:
                last_error = SynthesisError(f"TTS request failed: {e}")
            else:
                if response.is_error:
                    raise SynthesisError(
                        f"API request failed: {response.status_code} - {response.text}",
                        status=response.status_code,
                    )
                if not response.content:
                    raise SynthesisError("TTS returned an empty response", status=response.status_code)
                return response.content

            if attempt < self.retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning("%s — retrying in %.1fs", last_error, delay)
                await asyncio.sleep(delay)

        raise last_error

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
