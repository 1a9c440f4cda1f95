"""State decision: which telemetry records become twin state snapshots."""

from __future__ import annotations

from typing import Sequence

from twinsync.core.errors import DecodeError
from twinsync.core.twin.connectivity import SenMLRecord, TelemetryMessage
from twinsync.core.twin.models import State, Twin, utcnow


def prepare_state(
    state: State,
    twin: Twin,
    records: Sequence[SenMLRecord],
    message: TelemetryMessage,
) -> bool:
    """Advance ``state`` in place for ``message``; return True when it must be saved.

    Only the twin's latest definition is consulted. Previously captured
    payload keys are kept, so each snapshot carries the values seen so far.
    Raises DecodeError when an attribute matches but ``records`` is empty.
    """
    definition = twin.latest_definition()
    state.twin_id = twin.id
    state.id += 1
    state.created = utcnow()
    state.definition = definition.id

    # First matching attribute wins; several attributes bound to the same
    # (channel, subtopic) pair are not all captured.
    for name, attribute in definition.attributes.items():
        if not attribute.persist_state:
            continue
        if attribute.channel == message.channel and attribute.subtopic == message.subtopic:
            if not records:
                raise DecodeError("SenML payload contains no records")
            state.payload[name] = records[0].value
            return True

    return False
