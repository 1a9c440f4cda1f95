"""Tests for the logging and metrics service middlewares."""

import logging

import pytest
from prometheus_client import REGISTRY

from twinsync.core.errors import NotFoundError
from twinsync.core.twin.middleware import LoggingMiddleware, MetricsMiddleware
from twinsync.core.twin.models import Twin


def _requests(method: str, status: str) -> float:
    return REGISTRY.get_sample_value("twins_requests_total", {"method": method, "status": status}) or 0.0


def _observations(method: str) -> float:
    return REGISTRY.get_sample_value("twins_request_duration_seconds_count", {"method": method}) or 0.0


@pytest.mark.asyncio
async def test_logging_middleware_logs_success_and_failure(service, caplog):
    svc = LoggingMiddleware(service)

    with caplog.at_level(logging.INFO, logger="twinsync.core.twin.middleware"):
        twin = await svc.add_twin("alice-token", Twin(name="pump"))
        with pytest.raises(NotFoundError):
            await svc.view_twin("alice-token", "missing")

    ok, failed = [r for r in caplog.records if r.name == "twinsync.core.twin.middleware"]
    assert ok.levelno == logging.INFO
    assert ok.method == "add_twin"
    assert ok.duration_ms >= 0
    assert failed.levelno == logging.WARNING
    assert failed.method == "view_twin"
    assert failed.twin_id == "missing"
    assert failed.error_code == "NOT_FOUND"
    assert twin.id == "twin-1"


@pytest.mark.asyncio
async def test_metrics_middleware_counts_by_status(service):
    svc = MetricsMiddleware(LoggingMiddleware(service))
    ok_before = _requests("view_twin", "success")
    fail_before = _requests("view_twin", "failure")
    seen_before = _observations("view_twin")

    twin = await svc.add_twin("alice-token", Twin(name="pump"))
    await svc.view_twin("alice-token", twin.id)
    with pytest.raises(NotFoundError):
        await svc.view_twin("alice-token", "missing")

    assert _requests("view_twin", "success") == ok_before + 1
    assert _requests("view_twin", "failure") == fail_before + 1
    assert _observations("view_twin") == seen_before + 2


@pytest.mark.asyncio
async def test_middleware_chain_preserves_results(service, channel):
    svc = MetricsMiddleware(LoggingMiddleware(service))

    twin = await svc.add_twin("alice-token", Twin(name="pump", thing_id="thing-1"))
    await svc.update_twin("alice-token", Twin(id=twin.id, name="pump-2"))

    assert (await svc.view_twin_by_thing("alice-token", "thing-1")).name == "pump-2"
    assert (await svc.list_twins("alice-token", 0, 10)).total == 1
    assert (await svc.list_states("alice-token", 0, 10, twin.id)).total == 0
    await svc.remove_twin("alice-token", twin.id)
    assert channel.topics == ["create/success", "update/success", "remove/success"]
