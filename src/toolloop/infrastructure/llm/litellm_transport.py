"""
LiteLLM streaming transport.

Wraps ``litellm.acompletion(stream=True)`` and maps provider exceptions
onto the runtime's error taxonomy by exception type name, so the API
manager can decide what to retry without importing provider SDKs.
"""

import asyncio
import os
from typing import Any, AsyncIterator

import litellm
import structlog

from toolloop.config.settings import ModelSettings, RetrySettings
from toolloop.core.domain.errors import (
    AuthError,
    ProtocolError,
    ToolloopError,
    TransportError,
)
from toolloop.core.interfaces.llm import ModelRequest


class LiteLLMTransport:
    """
    Streaming model transport backed by LiteLLM.

    Args:
        model_settings: Provider connection settings
        retry_settings: Exception type names used for classification
    """

    def __init__(self, model_settings: ModelSettings, retry_settings: RetrySettings):
        self.model_settings = model_settings
        self.retry_on_errors = list(retry_settings.retry_on_errors)
        self.auth_errors = list(retry_settings.auth_errors)
        self.logger = structlog.get_logger().bind(component="litellm_transport")

    async def init(self) -> None:
        if self.model_settings.api_key_env and not os.getenv(self.model_settings.api_key_env):
            self.logger.warning("api_key_missing", env_var=self.model_settings.api_key_env)
        self.logger.debug("transport_ready", model=self.model_settings.name)

    async def shutdown(self) -> None:
        pass

    def _completion_params(self, request: ModelRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": request.model or self.model_settings.name,
            "messages": request.to_messages(),
            "stream": True,
            "timeout": self.model_settings.timeout,
            "temperature": self.model_settings.temperature,
            "max_tokens": self.model_settings.max_tokens,
        }
        api_key = os.getenv(self.model_settings.api_key_env) if self.model_settings.api_key_env else None
        if api_key:
            params["api_key"] = api_key
        if self.model_settings.api_base:
            params["api_base"] = self.model_settings.api_base
        params.update(request.params)
        return params

    def classify(self, error: Exception) -> ToolloopError:
        """Map a provider exception to TransportError, AuthError or ProtocolError."""
        if isinstance(error, ToolloopError):
            return error

        error_type = type(error).__name__
        message = str(error)[:500] or error_type

        if any(name == error_type for name in self.auth_errors):
            return AuthError(f"{error_type}: {message}")
        if any(name in error_type or name in message for name in self.retry_on_errors):
            return TransportError(f"{error_type}: {message}")
        if isinstance(error, (ConnectionError, asyncio.TimeoutError, TimeoutError)):
            return TransportError(f"{error_type}: {message}")
        return ProtocolError(f"{error_type}: {message}")

    async def stream(self, request: ModelRequest) -> AsyncIterator[str]:
        """Yield content deltas of a streamed completion."""
        params = self._completion_params(request)
        self.logger.info("llm_stream_started", model=params["model"], message_count=len(params["messages"]))

        try:
            response = await litellm.acompletion(**params)
        except Exception as e:
            error = self.classify(e)
            self.logger.warning("llm_stream_request_failed", error_type=type(e).__name__, code=error.code)
            raise error from e

        fragments = 0
        try:
            async for chunk in response:
                try:
                    delta = chunk.choices[0].delta.content
                except (AttributeError, IndexError, TypeError) as e:
                    raise ProtocolError(f"Malformed stream chunk: {chunk!r}"[:500]) from e
                if delta:
                    fragments += 1
                    yield delta
        except ToolloopError:
            raise
        except Exception as e:
            error = self.classify(e)
            self.logger.warning(
                "llm_stream_interrupted",
                error_type=type(e).__name__,
                code=error.code,
                fragments=fragments,
            )
            raise error from e
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()

        self.logger.info("llm_stream_completed", model=params["model"], fragments=fragments)
