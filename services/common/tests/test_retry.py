"""Tests for HTTP retry helpers."""

import httpx
import pytest

from services.common.retry import post_with_retry


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPostWithRetry:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_connect_errors_then_succeeds(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"ok": True})

        async with _client(handler) as client:
            response = await post_with_retry(
                client, "http://model.local/api", max_attempts=3, base_delay=0.0, jitter=False
            )

        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(httpx.ReadTimeout):
                await post_with_retry(
                    client, "http://model.local/api", max_attempts=2, base_delay=0.0, jitter=False
                )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_status_is_returned_without_retry(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="model not loaded")

        async with _client(handler) as client:
            response = await post_with_retry(client, "http://model.local/api", max_attempts=3)

        assert response.status_code == 500
        assert len(calls) == 1
