"""
Logging and metrics middlewares for the twins service.

Both wrap a ``Service`` and expose the same interface, so they can be
chained: ``MetricsMiddleware(LoggingMiddleware(TwinsService(...)))``.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from twinsync.core.errors import TwinsError
from twinsync.core.twin.connectivity import TelemetryMessage
from twinsync.core.twin.models import Definition, Metadata, StatesPage, Twin, TwinsPage
from twinsync.core.twin.service import Service
from twinsync.utils.metrics import twins_request_duration_seconds, twins_requests_total

logger = logging.getLogger(__name__)


class LoggingMiddleware:
    def __init__(self, svc: Service) -> None:
        self.svc = svc

    @asynccontextmanager
    async def _log(self, method: str, **fields: Any) -> AsyncIterator[None]:
        start = time.perf_counter()
        extra: Dict[str, Any] = {"method": method, **fields}
        try:
            yield
        except Exception as exc:
            extra["duration_ms"] = round((time.perf_counter() - start) * 1000, 3)
            extra["error_code"] = exc.code.value if isinstance(exc, TwinsError) else type(exc).__name__
            logger.warning("Method %s failed: %s", method, exc, extra=extra)
            raise
        extra["duration_ms"] = round((time.perf_counter() - start) * 1000, 3)
        logger.info("Method %s completed", method, extra=extra)

    async def add_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> Twin:
        async with self._log("add_twin"):
            return await self.svc.add_twin(token, twin, definition)

    async def update_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> None:
        async with self._log("update_twin", twin_id=twin.id):
            await self.svc.update_twin(token, twin, definition)

    async def view_twin(self, token: str, twin_id: str) -> Twin:
        async with self._log("view_twin", twin_id=twin_id):
            return await self.svc.view_twin(token, twin_id)

    async def view_twin_by_thing(self, token: str, thing_id: str) -> Twin:
        async with self._log("view_twin_by_thing", thing_id=thing_id):
            return await self.svc.view_twin_by_thing(token, thing_id)

    async def list_twins(
        self,
        token: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage:
        async with self._log("list_twins"):
            return await self.svc.list_twins(token, offset, limit, name, metadata)

    async def remove_twin(self, token: str, twin_id: str) -> None:
        async with self._log("remove_twin", twin_id=twin_id):
            await self.svc.remove_twin(token, twin_id)

    async def save_state(self, message: TelemetryMessage) -> None:
        async with self._log("save_state", publisher=message.publisher):
            await self.svc.save_state(message)

    async def list_states(self, token: str, offset: int, limit: int, twin_id: str) -> StatesPage:
        async with self._log("list_states", twin_id=twin_id):
            return await self.svc.list_states(token, offset, limit, twin_id)


class MetricsMiddleware:
    def __init__(self, svc: Service) -> None:
        self.svc = svc

    @asynccontextmanager
    async def _measure(self, method: str) -> AsyncIterator[None]:
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except Exception:
            status = "failure"
            raise
        finally:
            twins_requests_total.labels(method=method, status=status).inc()
            twins_request_duration_seconds.labels(method=method).observe(time.perf_counter() - start)

    async def add_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> Twin:
        async with self._measure("add_twin"):
            return await self.svc.add_twin(token, twin, definition)

    async def update_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> None:
        async with self._measure("update_twin"):
            await self.svc.update_twin(token, twin, definition)

    async def view_twin(self, token: str, twin_id: str) -> Twin:
        async with self._measure("view_twin"):
            return await self.svc.view_twin(token, twin_id)

    async def view_twin_by_thing(self, token: str, thing_id: str) -> Twin:
        async with self._measure("view_twin_by_thing"):
            return await self.svc.view_twin_by_thing(token, thing_id)

    async def list_twins(
        self,
        token: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage:
        async with self._measure("list_twins"):
            return await self.svc.list_twins(token, offset, limit, name, metadata)

    async def remove_twin(self, token: str, twin_id: str) -> None:
        async with self._measure("remove_twin"):
            await self.svc.remove_twin(token, twin_id)

    async def save_state(self, message: TelemetryMessage) -> None:
        async with self._measure("save_state"):
            await self.svc.save_state(message)

    async def list_states(self, token: str, offset: int, limit: int, twin_id: str) -> StatesPage:
        async with self._measure("list_states"):
            return await self.svc.list_states(token, offset, limit, twin_id)


__all__ = ["LoggingMiddleware", "MetricsMiddleware"]
