"""Tests for nexus.api.provider — ProviderClient and JSON payload parsing."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from nexus.api.provider import ProviderClient, ProviderError, parse_json_payload
from nexus.config import ProviderConfig


def _response(*texts: str) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=t) for t in texts]
        + [SimpleNamespace(type="tool_use", id="x")],
        usage=SimpleNamespace(input_tokens=10, output_tokens=4),
        stop_reason="end_turn",
    )


def _client(side_effect=None, return_value=None) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=side_effect, return_value=return_value)
    return client


@pytest.fixture()
def config() -> ProviderConfig:
    return ProviderConfig(
        _env_file=None,
        api_key="sk-test",
        model="worker-model",
        planner_model="planner-model",
        retry_max_retries=2,
    )


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    async def _fake_sleep(_delay: float) -> None:
        return None

    monkeypatch.setattr("nexus.harness.retry.asyncio.sleep", _fake_sleep)


class TestParseJsonPayload:

    def test_plain_object(self) -> None:
        assert parse_json_payload('{"agents": []}') == {"agents": []}

    def test_fenced_object(self) -> None:
        assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}

    def test_object_wrapped_in_prose(self) -> None:
        assert parse_json_payload('Here you go: {"a": {"b": 2}} hope it helps') == {"a": {"b": 2}}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{broken"])
    def test_rejects_non_objects(self, text) -> None:
        with pytest.raises(ProviderError):
            parse_json_payload(text)


class TestProviderClient:

    @pytest.mark.asyncio
    async def test_generate_returns_text_and_records_telemetry(self, config) -> None:
        client = _client(return_value=_response("hello", "world"))
        provider = ProviderClient(config, client=client)

        text = await provider.generate("system", "prompt")

        assert text == "hello\nworld"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "worker-model"
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert "temperature" not in kwargs
        assert provider.telemetry["total_calls"] == 1
        assert provider.telemetry["total_tokens"] == 14

    @pytest.mark.asyncio
    async def test_generate_retries_transient_errors(self, config) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIConnectionError(message="Connection error.", request=request)
        client = _client(side_effect=[error, _response("ok")])

        text = await ProviderClient(config, client=client).generate("s", "p")

        assert text == "ok"
        assert client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_generate_wraps_exhausted_errors(self, config) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIConnectionError(message="Connection error.", request=request)
        client = _client(side_effect=error)

        with pytest.raises(ProviderError, match="unreachable"):
            await ProviderClient(config, client=client).generate("s", "p")
        assert client.messages.create.await_count == 3

    @pytest.mark.asyncio
    async def test_generate_does_not_retry_bad_request(self, config) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(400, request=request)
        client = _client(side_effect=anthropic.BadRequestError(message="bad", response=response, body={}))

        with pytest.raises(ProviderError):
            await ProviderClient(config, client=client).generate("s", "p")
        assert client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_generate_wraps_timeouts(self, config) -> None:
        config.retry_max_retries = 0
        client = _client(side_effect=asyncio.TimeoutError())

        with pytest.raises(ProviderError, match="timed out"):
            await ProviderClient(config, client=client).generate("s", "p")

    @pytest.mark.asyncio
    async def test_generate_json_uses_low_temperature(self, config) -> None:
        client = _client(return_value=_response('{"agents": []}'))
        provider = ProviderClient(config, client=client)

        payload = await provider.generate_json("s", "p", model=provider.planner_model)

        assert payload == {"agents": []}
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["temperature"] == 0.2
        assert kwargs["model"] == "planner-model"

    def test_planner_model_defaults_to_model(self) -> None:
        cfg = ProviderConfig(_env_file=None, api_key="sk-test", model="solo-model", planner_model="")
        assert ProviderClient(cfg, client=MagicMock()).planner_model == "solo-model"
