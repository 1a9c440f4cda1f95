"""
Twins service: twin lifecycle and telemetry driven state snapshots.

Every mutating operation (add, update, remove, save_state) runs inside
``notify_outcome`` so its success or failure is announced on the
notification channel.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from twinsync.core.errors import (
    DecodeError,
    NotFoundError,
    PersistenceError,
    TwinsError,
    UnauthorizedError,
)
from twinsync.core.storage.states import StateRepository
from twinsync.core.storage.twins import TwinRepository
from twinsync.core.twin.auth import IdentityVerifier
from twinsync.core.twin.connectivity import TelemetryMessage, decode_records
from twinsync.core.twin.models import (
    Definition,
    Metadata,
    StatesPage,
    Twin,
    TwinsPage,
    utcnow,
)
from twinsync.core.twin.notify import CrudOp, NotificationChannel, notify_outcome
from twinsync.core.twin.state import prepare_state

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def id(self) -> str: ...


class UUIDProvider:
    def id(self) -> str:
        return str(uuid.uuid4())


class Service(Protocol):
    """API fulfilled by TwinsService and its middlewares (logging, metrics)."""

    async def add_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> Twin: ...

    async def update_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> None: ...

    async def view_twin(self, token: str, twin_id: str) -> Twin: ...

    async def view_twin_by_thing(self, token: str, thing_id: str) -> Twin: ...

    async def list_twins(
        self,
        token: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage: ...

    async def remove_twin(self, token: str, twin_id: str) -> None: ...

    async def save_state(self, message: TelemetryMessage) -> None: ...

    async def list_states(self, token: str, offset: int, limit: int, twin_id: str) -> StatesPage: ...


@asynccontextmanager
async def _repository_call(operation: str) -> AsyncIterator[None]:
    """Translate unexpected repository failures into PersistenceError."""
    try:
        yield
    except TwinsError:
        raise
    except Exception as exc:
        raise PersistenceError(f"{operation} failed: {exc}") from exc


class TwinsService:
    def __init__(
        self,
        auth: IdentityVerifier,
        twins: TwinRepository,
        states: StateRepository,
        notifier: NotificationChannel,
        idp: Optional[IdentityProvider] = None,
    ) -> None:
        self.auth = auth
        self.twins = twins
        self.states = states
        self.notifier = notifier
        self.idp = idp or UUIDProvider()

    async def identify(self, token: str) -> str:
        try:
            return await self.auth.identify(token)
        except UnauthorizedError:
            raise
        except Exception as exc:
            raise UnauthorizedError() from exc

    async def add_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> Twin:
        async with notify_outcome(self.notifier, CrudOp.CREATE_SUCCESS, CrudOp.CREATE_FAILURE) as outcome:
            owner = await self.identify(token)

            twin = twin.model_copy(deep=True)
            twin.id = self.idp.id()
            twin.owner = owner
            now = utcnow()
            twin.created = now
            twin.updated = now

            if definition is None or not definition.attributes:
                definition = Definition()
            else:
                definition = definition.model_copy(deep=True)
            definition.created = now
            definition.id = 0
            twin.definitions = [definition]
            twin.revision = 0

            async with _repository_call("saving twin"):
                await self.twins.save(twin)

            outcome.identity = twin.id
            outcome.payload = twin.model_dump_json().encode("utf-8")
            return twin

    async def update_twin(self, token: str, twin: Twin, definition: Optional[Definition] = None) -> None:
        async with notify_outcome(
            self.notifier, CrudOp.UPDATE_SUCCESS, CrudOp.UPDATE_FAILURE, identity=twin.id
        ) as outcome:
            await self.identify(token)

            async with _repository_call("retrieving twin"):
                stored = await self.twins.retrieve_by_id(twin.id)
            stored.updated = utcnow()
            stored.revision += 1

            if twin.name:
                stored.name = twin.name

            if twin.thing_id:
                stored.thing_id = twin.thing_id

            if definition is not None and definition.attributes:
                definition = definition.model_copy(deep=True)
                definition.created = utcnow()
                definition.id = stored.latest_definition().id + 1
                stored.definitions.append(definition)

            # Metadata is replaced only when the patch carries none; an
            # update without metadata therefore clears the stored value.
            if not twin.metadata:
                stored.metadata = dict(twin.metadata)

            async with _repository_call("updating twin"):
                await self.twins.update(stored)

            outcome.payload = stored.model_dump_json().encode("utf-8")

    async def view_twin(self, token: str, twin_id: str) -> Twin:
        await self.identify(token)
        async with _repository_call("retrieving twin"):
            return await self.twins.retrieve_by_id(twin_id)

    async def view_twin_by_thing(self, token: str, thing_id: str) -> Twin:
        await self.identify(token)
        async with _repository_call("retrieving twin by thing"):
            return await self.twins.retrieve_by_thing(thing_id)

    async def list_twins(
        self,
        token: str,
        offset: int,
        limit: int,
        name: str = "",
        metadata: Optional[Metadata] = None,
    ) -> TwinsPage:
        owner = await self.identify(token)
        async with _repository_call("listing twins"):
            return await self.twins.retrieve_all(owner, offset, limit, name, metadata)

    async def remove_twin(self, token: str, twin_id: str) -> None:
        async with notify_outcome(
            self.notifier, CrudOp.REMOVE_SUCCESS, CrudOp.REMOVE_FAILURE, identity=twin_id
        ):
            await self.identify(token)
            async with _repository_call("removing twin"):
                await self.twins.remove(twin_id)

    async def save_state(self, message: TelemetryMessage) -> None:
        async with notify_outcome(self.notifier, CrudOp.STATE_SUCCESS, CrudOp.STATE_FAILURE) as outcome:
            publisher = message.publisher
            try:
                async with _repository_call(f"retrieving twin for {publisher}"):
                    twin = await self.twins.retrieve_by_thing(publisher)
            except NotFoundError as exc:
                raise NotFoundError(f"retrieving twin for {publisher} failed: {exc.message}") from exc

            try:
                records = decode_records(message.payload)
            except DecodeError as exc:
                raise DecodeError(f"decoding payload for {publisher} failed: {exc.message}") from exc

            async with _repository_call(f"retrieving last state for {publisher}"):
                state = await self.states.retrieve_last(twin.id)

            try:
                save = prepare_state(state, twin, records, message)
            except DecodeError as exc:
                raise DecodeError(f"decoding payload for {publisher} failed: {exc.message}") from exc

            if not save:
                logger.debug(
                    "No persistable attribute for telemetry",
                    extra={"publisher": publisher, "twin_id": twin.id},
                )
                return

            async with _repository_call(f"updating state for {publisher}"):
                await self.states.save(state)

            outcome.identity = publisher
            outcome.payload = message.payload

    async def list_states(self, token: str, offset: int, limit: int, twin_id: str) -> StatesPage:
        await self.identify(token)
        async with _repository_call("listing states"):
            return await self.states.retrieve_all(offset, limit, twin_id)


__all__ = ["IdentityProvider", "UUIDProvider", "Service", "TwinsService"]
