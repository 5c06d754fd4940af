"""
Unit Tests for the Cron Handler Wrapper

Drives the wrapped endpoint through a FastAPI app with httpx's ASGI transport.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI

from cronkit.core.logging.logger import get_job_name
from cronkit.core.resilience.retry import RetryOptions
from cronkit.jobs.cron_handler import CronJobOptions, log_cron_execution, wrap_cron_handler

SECRET = "test-cron-secret"
API_KEY = "test-api-key"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def build_app(handler, lock_manager, options=None, cron_secret=SECRET, api_key=API_KEY):
    app = FastAPI()
    app.add_api_route(
        "/api/cron/digest",
        wrap_cron_handler(
            "digest",
            handler,
            lock_manager=lock_manager,
            options=options or CronJobOptions(retry=RetryOptions(max_retries=2)),
            cron_secret=cron_secret,
            api_key=api_key,
        ),
        methods=["GET"],
    )
    return app


async def call(app, headers=None):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get("/api/cron/digest", headers=headers or {})


@pytest.mark.unit
class TestAuthorization:
    @pytest.mark.asyncio
    async def test_missing_credentials_rejected(self, lock_manager):
        handler = AsyncMock(return_value="done")

        response = await call(build_app(handler, lock_manager))

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_bearer_rejected(self, lock_manager):
        response = await call(
            build_app(AsyncMock(), lock_manager), {"Authorization": "Bearer nope"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_api_key_accepted(self, lock_manager, no_sleep):
        response = await call(
            build_app(AsyncMock(return_value=1), lock_manager), {"x-api-key": API_KEY}
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unconfigured_secrets_reject_everything(self, lock_manager):
        app = build_app(AsyncMock(), lock_manager, cron_secret="", api_key="")

        response = await call(app, {"Authorization": "Bearer", "x-api-key": "anything"})

        assert response.status_code == 401


@pytest.mark.unit
class TestExecution:
    @pytest.mark.asyncio
    async def test_success_response(self, lock_manager, no_sleep):
        handler = AsyncMock(return_value={"processed": 10})

        response = await call(build_app(handler, lock_manager), AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["jobName"] == "digest"
        assert body["data"] == {"processed": 10}
        assert body["attempts"] == 1
        assert isinstance(body["duration"], int)

    @pytest.mark.asyncio
    async def test_handler_receives_request(self, lock_manager, no_sleep):
        seen = {}

        async def handler(request):
            seen["path"] = request.url.path
            seen["job"] = get_job_name()
            return None

        await call(build_app(handler, lock_manager), AUTH)

        assert seen == {"path": "/api/cron/digest", "job": "digest"}

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, lock_manager, no_sleep):
        handler = AsyncMock(side_effect=[ConnectionError("flaky"), "ok"])

        response = await call(build_app(handler, lock_manager), AUTH)

        assert response.status_code == 200
        assert response.json()["attempts"] == 2
        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_500(self, lock_manager, no_sleep):
        handler = AsyncMock(side_effect=RuntimeError("feed unavailable"))

        response = await call(build_app(handler, lock_manager), AUTH)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "feed unavailable"
        assert body["attempts"] == 3
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, lock_manager, no_sleep):
        await call(build_app(AsyncMock(side_effect=RuntimeError("x")), lock_manager), AUTH)

        assert await lock_manager.get_lock("digest") is None
        assert await lock_manager.get_last_run("digest") is not None
        assert get_job_name() is None


@pytest.mark.unit
class TestGuard:
    @pytest.mark.asyncio
    async def test_busy_lock_returns_skipped(self, lock_manager):
        await lock_manager.acquire("digest", holder_id="other-instance")
        handler = AsyncMock()

        response = await call(build_app(handler, lock_manager), AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["skipped"] is True
        assert "other-instance" in body["reason"]
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skip_window_suppresses_second_run(self, lock_manager, no_sleep):
        handler = AsyncMock(return_value="sent")
        app = build_app(handler, lock_manager, CronJobOptions(skip_window=3600))

        first = await call(app, AUTH)
        second = await call(app, AUTH)

        assert first.json()["data"] == "sent"
        assert second.status_code == 200
        assert second.json()["skipped"] is True
        assert handler.await_count == 1


@pytest.mark.unit
class TestLogCronExecution:
    def test_never_raises(self):
        log_cron_execution("digest", "started")
        log_cron_execution("digest", "error", duration=5, attempts=2, error="boom")
