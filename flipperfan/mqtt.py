import asyncio
import json
import logging
import os
from typing import Any, Optional, Set

import aiomqtt as mqtt
import paho.mqtt.client as paho_mqtt  # topic_matches_sub

from .accessory import FanAccessory
from .constants import DEFAULT_MQTT_PORT, DEFAULT_MQTT_TOPIC
from .exceptions import CommunicationFailure
from .types import AccessoryState, ConnectionState

_TRUE_PAYLOADS = {"on", "true", "1"}
_FALSE_PAYLOADS = {"off", "false", "0"}


def parse_on_payload(payload: str) -> bool:
    value = payload.strip().lower()
    if value in _TRUE_PAYLOADS:
        return True
    if value in _FALSE_PAYLOADS:
        return False
    raise ValueError(f"Invalid on/off payload: {payload!r}")


def parse_speed_payload(payload: str) -> int:
    try:
        return int(payload.strip())
    except ValueError:
        raise ValueError(f"Invalid speed payload: {payload!r}") from None


class MqttBridge:
    """Exposes a FanAccessory over MQTT.

    Commands arrive on ``<topic>/commands/on``, ``<topic>/commands/speed`` and
    ``<topic>/commands/get``. The state is published retained to
    ``<topic>/state`` and the link availability to ``<topic>/status``.
    """

    def __init__(self, accessory: FanAccessory, logger: Optional[logging.Logger] = None) -> None:
        self.accessory = accessory
        self.logger = logger or logging.getLogger(__name__)
        self.client: Optional[mqtt.Client] = None  # Will be set in __aenter__

        self.mqtt_host = os.environ.get("MQTT_HOST", "localhost")
        self.mqtt_port = int(os.environ.get("MQTT_PORT", DEFAULT_MQTT_PORT))
        self.mqtt_topic = os.environ.get("MQTT_TOPIC", DEFAULT_MQTT_TOPIC)
        self.mqtt_username = os.environ.get("MQTT_USERNAME")
        self.mqtt_password = os.environ.get("MQTT_PASSWORD")

        self.command_topic = f"{self.mqtt_topic}/commands/#"
        self.state_topic = f"{self.mqtt_topic}/state"
        self.status_topic = f"{self.mqtt_topic}/status"
        self._tasks: Set[asyncio.Task[Any]] = set()

    async def __aenter__(self) -> "MqttBridge":
        self.logger.debug("Initializing MQTT client...")
        will = mqtt.Will(self.status_topic, "offline", retain=True)

        if self.mqtt_username and self.mqtt_password:
            self.client = mqtt.Client(
                hostname=self.mqtt_host,
                port=self.mqtt_port,
                username=self.mqtt_username,
                password=self.mqtt_password,
                will=will,
            )
        else:
            self.client = mqtt.Client(
                hostname=self.mqtt_host,
                port=self.mqtt_port,
                will=will,
            )
        try:
            await self.client.__aenter__()
            self.logger.info("Connected to MQTT broker %s:%s", self.mqtt_host, self.mqtt_port)
            return self
        except Exception:
            self.client = None
            self.logger.error("Could not connect to MQTT broker %s:%s", self.mqtt_host, self.mqtt_port, exc_info=True)
            raise

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.client:
            self.logger.info("Disconnecting from MQTT broker...")
            await self.publish_status(False)
            await self.client.__aexit__(exc_type, exc_val, exc_tb)
            self.client = None
            self.logger.info("Disconnected from MQTT broker.")

    async def run_command_listener(self) -> None:
        """Listens for commands on the command topic until cancelled or disconnected."""
        if not self.client:
            self.logger.error("MQTT client is not connected. Cannot start command listener.")
            return

        self.logger.info("Subscribing to %s", self.command_topic)
        try:
            await self.client.subscribe(self.command_topic)
            async for message in self.client.messages:
                topic_str = str(message.topic)
                if not paho_mqtt.topic_matches_sub(self.command_topic, topic_str):
                    continue
                try:
                    payload = message.payload.decode("utf-8") if isinstance(message.payload, bytes) else str(message.payload)
                    self.logger.debug("Received MQTT message on %s: %s", topic_str, payload)
                    command = topic_str.rsplit("/", 1)[-1]
                    await self.handle_command(command, payload)
                except Exception:
                    self.logger.exception("Error processing incoming MQTT message on %s", topic_str)
        except mqtt.MqttError:
            self.logger.warning("Command listener stopped due to MQTT error (e.g. disconnect).")
        except asyncio.CancelledError:
            self.logger.info("Command listener task cancelled.")
            raise

    async def handle_command(self, command: str, payload: str) -> None:
        try:
            if command == "on":
                await self.accessory.set_on(parse_on_payload(payload))
            elif command == "speed":
                await self.accessory.set_speed(parse_speed_payload(payload))
            elif command != "get":
                self.logger.warning("Unknown MQTT command: %s", command)
                return
            state = AccessoryState(
                on=await self.accessory.get_on(),
                speed=await self.accessory.get_speed(),
            )
        except CommunicationFailure as exc:
            self.logger.warning("Cannot handle MQTT command %s: %s", command, exc)
            await self.publish_status(False)
            return
        except ValueError as exc:
            self.logger.warning("Rejected MQTT command %s: %s", command, exc)
            return

        await self.publish_state(state)

    async def publish_state(self, state: AccessoryState) -> None:
        await self._publish(self.state_topic, json.dumps(state.to_dict()), retain=True)

    async def publish_status(self, online: bool) -> None:
        await self._publish(self.status_topic, "online" if online else "offline", retain=True)

    async def _publish(self, topic: str, payload: str, retain: bool = False) -> None:
        if not self.client:
            self.logger.warning("Attempted to publish without an active MQTT client.")
            return
        try:
            await self.client.publish(topic, payload, retain=retain)
            self.logger.debug("Published to %s: %s", topic, payload)
        except mqtt.MqttError:
            self.logger.error("Failed to publish to %s", topic, exc_info=True)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def notify_link_state(self, state: ConnectionState) -> None:
        """SerialLink state listener; mirrors availability to the status topic."""
        if state is ConnectionState.OPEN:
            self._spawn(self.publish_status(True))
        elif state in (ConnectionState.RECONNECTING, ConnectionState.CLOSED):
            self._spawn(self.publish_status(False))

    def notify_settled(self, state: AccessoryState) -> None:
        """StateReconciler settled callback; publishes the committed state."""
        self._spawn(self.publish_state(state))
