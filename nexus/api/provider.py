"""
Provider Client — the swarm's interface to the generative model.

This module wraps the Anthropic SDK. Decomposition, agent execution, synthesis
and follow-up answers all end up as a call to ``generate()`` or
``generate_json()`` here. The client holds no mission state: it receives a
prompt and returns text, keeping only call telemetry.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Optional

import anthropic
import structlog

from nexus.config import ProviderConfig
from nexus.harness.retry import RetryConfig, with_retries

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ProviderInitError(RuntimeError):
    """Raised when the provider client cannot be initialized safely."""


class ProviderError(RuntimeError):
    """Raised when a provider call fails for good or returns unusable output."""


def parse_json_payload(text: str) -> dict[str, Any]:
    """
    Parse a JSON object out of model output.

    Models occasionally wrap JSON in markdown fences or add a sentence around
    it, so fences are stripped and, failing a direct parse, the outermost
    ``{...}`` span is tried.
    """
    stripped = _FENCE_RE.sub("", text.strip()).strip()
    if not stripped:
        raise ProviderError("Empty response where JSON was expected")
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start == -1 or end <= start:
            raise ProviderError("Response did not contain a JSON object") from None
        try:
            data = json.loads(stripped[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Malformed JSON in response: {exc}") from exc
    if not isinstance(data, dict):
        raise ProviderError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class ProviderClient:
    """
    Wraps the Anthropic Messages API for the swarm backend.

    - generate(): plain text completion for a single user prompt
    - generate_json(): same, parsed as a JSON object
    """

    def __init__(self, config: ProviderConfig, client: Any = None):
        try:
            if client is not None:
                self._async_client = client
            elif config.api_key:
                self._async_client = anthropic.AsyncAnthropic(api_key=config.api_key)
            else:
                self._async_client = anthropic.AsyncAnthropic(auth_token=config.auth_token)
            self._model = config.model
            self._planner_model = config.planner_model or config.model
            self._max_tokens = config.max_tokens
            self._request_timeout_seconds = float(config.request_timeout_seconds)
            self._retry_config = RetryConfig(
                max_retries=config.retry_max_retries,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
                exponential_base=config.retry_exponential_base,
                jitter_range=config.retry_jitter_range,
            )

            # Telemetry
            self._total_input_tokens = 0
            self._total_output_tokens = 0
            self._total_calls = 0
            self._last_call_time: Optional[float] = None

            logger.info(
                "provider.initialized",
                model=self._model,
                planner_model=self._planner_model,
                auth_method="api_key" if config.api_key else "auth_token",
            )
        except ProviderInitError:
            raise
        except Exception as exc:
            raise ProviderInitError(f"Failed to initialize provider client: {exc}") from exc

    @property
    def model(self) -> str:
        return self._model

    @property
    def planner_model(self) -> str:
        return self._planner_model

    async def generate(
        self,
        system_prompt: str,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Send one user prompt and return the concatenated text reply.

        Transient failures are retried; anything left over is raised as
        ProviderError so callers only deal with one exception type.
        """
        start_time = time.monotonic()
        kwargs: dict[str, Any] = {
            "model": model or self._model,
            "max_tokens": max_tokens or self._max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        async def _create() -> Any:
            return await asyncio.wait_for(
                self._async_client.messages.create(**kwargs),
                timeout=self._request_timeout_seconds,
            )

        try:
            response = await with_retries(_create, config=self._retry_config)
        except anthropic.APIConnectionError as e:
            logger.error("provider.connection_error", error=str(e))
            raise ProviderError(f"Provider unreachable: {e}") from e
        except anthropic.RateLimitError as e:
            logger.warning("provider.rate_limited", error=str(e))
            raise ProviderError(f"Provider rate limit: {e}") from e
        except anthropic.APIError as e:
            logger.error("provider.api_error", error=str(e), status=getattr(e, "status_code", None))
            raise ProviderError(f"Provider error: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error("provider.timeout", timeout=self._request_timeout_seconds)
            raise ProviderError(
                f"Provider call timed out after {self._request_timeout_seconds:.0f}s"
            ) from e
        except OSError as e:
            logger.error("provider.network_error", error=str(e))
            raise ProviderError(f"Network error: {e}") from e

        elapsed = time.monotonic() - start_time
        usage = getattr(response, "usage", None)
        if usage is not None:
            self._total_input_tokens += getattr(usage, "input_tokens", 0) or 0
            self._total_output_tokens += getattr(usage, "output_tokens", 0) or 0
        self._total_calls += 1
        self._last_call_time = elapsed

        text = self.extract_text(response)
        logger.debug(
            "provider.call_complete",
            model=kwargs["model"],
            elapsed_seconds=round(elapsed, 2),
            stop_reason=getattr(response, "stop_reason", None),
            chars=len(text),
        )
        return text

    async def generate_json(
        self,
        system_prompt: str,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Generate and parse a JSON object reply (low temperature)."""
        text = await self.generate(
            system_prompt=system_prompt,
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=0.2,
        )
        return parse_json_payload(text)

    @staticmethod
    def extract_text(response: Any) -> str:
        """Extract all text content from a response, ignoring other block types."""
        parts = []
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) == "text":
                parts.append(block.text)
        return "\n".join(parts).strip()

    @property
    def telemetry(self) -> dict[str, Any]:
        """Return current telemetry snapshot."""
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "total_tokens": self._total_input_tokens + self._total_output_tokens,
            "last_call_seconds": self._last_call_time if self._last_call_time is not None else 0.0,
        }
