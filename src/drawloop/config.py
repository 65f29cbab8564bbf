import os

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "DRAWLOOP_"


class ServiceConfig(BaseSettings):
    """Connection and generation settings for :class:`ChatService`.

    Every field can be set from a ``DRAWLOOP_<FIELD>`` environment
    variable; the API key also falls back to ``OPENAI_API_KEY``.
    Keyword arguments win over the environment.

    Args:
        base_url: API base URL, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token sent with every request.
        model: Model name passed through to the endpoint.
        temperature: Sampling temperature, 0 to 2.
        max_tokens: Upper bound on generated tokens per request.
        system_prompt: Prepended as a system message when non-empty.
        max_iterations: Ceiling on provider round-trips in the tool loop.
        request_timeout: Per-request transport timeout in seconds.
        loop_timeout: Optional wall-clock bound on a whole tool loop.
        max_retries: Transport-level retries performed by the HTTP client.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="ignore",
    )

    base_url: str = ""
    api_key: str = ""
    model: str = ""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, gt=0)
    system_prompt: str = ""
    max_iterations: int = Field(default=10, ge=1)
    request_timeout: float | None = 600.0
    loop_timeout: float | None = None
    max_retries: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _openai_key_fallback(cls, data):
        if isinstance(data, dict) and "api_key" not in data and os.getenv("OPENAI_API_KEY"):
            data = {**data, "api_key": os.getenv("OPENAI_API_KEY")}
        return data

    @classmethod
    def from_env(cls, **overrides) -> "ServiceConfig":
        """Build a config from the environment, with *overrides* on top."""
        return cls(**overrides)
