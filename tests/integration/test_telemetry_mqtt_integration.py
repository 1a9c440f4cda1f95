import asyncio
import os
import uuid

import aiomqtt
import pytest

from twinsync.core.twin.auth import StaticIdentityVerifier
from twinsync.core.twin.connectivity import MqttConfig, MqttTelemetryClient, TelemetryMessage
from twinsync.core.twin.ingest import TelemetryIngestor
from twinsync.core.twin.models import Attribute, Definition, Twin
from twinsync.core.twin.notify import MqttNotificationChannel
from twinsync.core.twin.service import TwinsService

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_mqtt_telemetry_becomes_state_and_notifies(twin_repo, state_repo):
    config = MqttConfig(
        host=os.getenv("MQTT_HOST", "localhost"),
        port=int(os.getenv("MQTT_PORT", "1883")),
        client_id=f"twinsync-it-{uuid.uuid4().hex[:6]}",
    )
    run_id = uuid.uuid4().hex[:6]
    telemetry_topic = f"twins-it/{run_id}/telemetry"
    channel_id = f"twins-it-{run_id}"

    notifier = MqttNotificationChannel(channel_id, config)
    svc = TwinsService(
        auth=StaticIdentityVerifier({"tok": "alice"}),
        twins=twin_repo,
        states=state_repo,
        notifier=notifier,
    )
    try:
        await notifier.connect()
    except aiomqtt.MqttError:
        pytest.skip("MQTT broker not available")

    attr = Attribute(channel="ch-1", subtopic="temp", persist_state=True)
    twin = await svc.add_twin("tok", Twin(name="pump", thing_id="thing-it"), Definition(attributes={"temp": attr}))

    subscriber = MqttTelemetryClient(config)
    await subscriber.start([telemetry_topic], TelemetryIngestor(svc).handle_mqtt)
    try:
        assert await subscriber.wait_subscribed(timeout=5.0)

        async with aiomqtt.Client(**config.client_kwargs("-listener")) as listener:
            await listener.subscribe(f"channels/{channel_id}/messages/#")

            message = TelemetryMessage(channel="ch-1", subtopic="temp", publisher="thing-it", payload=b'[{"v":42}]')
            async with aiomqtt.Client(**config.client_kwargs("-publisher")) as publisher:
                await publisher.publish(telemetry_topic, message.to_bytes(), qos=1)

            async def first_notification() -> str:
                async for received in listener.messages:
                    return str(received.topic)
                return ""

            topic = await asyncio.wait_for(first_notification(), timeout=5.0)

        assert topic == f"channels/{channel_id}/messages/thing-it/state/success"
        last = await state_repo.retrieve_last(twin.id)
        assert last.id == 1
        assert last.payload == {"temp": 42.0}
    finally:
        await subscriber.stop()
        await notifier.close()
