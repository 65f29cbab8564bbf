from collections.abc import AsyncIterator
import logging

import httpx
import openai
from openai import AsyncOpenAI

from drawloop.config import ServiceConfig
from drawloop.errors import StreamReadError, TransportError

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/chat/completions"


class ModelProvider:
    """Transport for chat completion request bodies.

    ``complete`` returns the decoded JSON of a non-streaming response;
    ``stream`` yields the raw bytes of a streaming response body.
    """

    async def complete(self, body: dict) -> dict:
        raise NotImplementedError

    def stream(self, body: dict) -> AsyncIterator[bytes]:
        raise NotImplementedError


class OpenAICompatibleProvider(ModelProvider):
    """Any endpoint speaking the OpenAI chat completions protocol.

    Args:
        base_url: API root; a trailing slash is ignored.
        api_key: Sent as ``Authorization: Bearer <key>``.
        timeout: Per-request timeout in seconds, ``None`` for no limit.
        max_retries: Retries the client performs on 429/5xx/connection errors.
        http_client: Optional preconfigured ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float | None = 600.0,
        max_retries: int = 0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key,
            max_retries=max_retries,
            timeout=timeout,
            http_client=http_client,
        )

    @classmethod
    def from_config(
        cls, config: ServiceConfig, http_client: httpx.AsyncClient | None = None,
    ) -> "OpenAICompatibleProvider":
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{CHAT_COMPLETIONS_PATH}"

    async def complete(self, body: dict) -> dict:
        try:
            raw = await self.client.chat.completions.with_raw_response.create(**body)
        except openai.APIStatusError as e:
            raise TransportError.from_status(e.status_code, e.response.text) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"Request failed: {e}") from e
        try:
            return raw.http_response.json()
        except ValueError as e:
            raise TransportError(f"Response is not JSON: {e}", status_code=raw.status_code) from e

    async def stream(self, body: dict) -> AsyncIterator[bytes]:
        try:
            async with self.client.chat.completions.with_streaming_response.create(
                **body
            ) as response:
                logger.info(f"Response status {response.status_code}")
                try:
                    async for chunk in response.iter_bytes():
                        yield chunk
                except (httpx.HTTPError, openai.APIError) as e:
                    raise StreamReadError(f"Stream read error: {e}") from e
        except openai.APIStatusError as e:
            raise TransportError.from_status(e.status_code, e.response.text) from e
        except openai.APIConnectionError as e:
            raise TransportError(f"Request failed: {e}") from e
