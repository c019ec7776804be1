import asyncio
import logging
import os
from typing import Any, List, Optional

from .accessory import FanAccessory
from .catalog import SignalCatalog
from .constants import DEBOUNCE_TIME
from .mqtt import MqttBridge
from .reconciler import StateReconciler
from .transmitter import TransmissionEngine
from .transport import SerialLink
from .types import SignalNames, SpeedBands, StateStore


class FanController:
    """Wires the serial link, transmission engine, reconciler and accessory together."""

    def __init__(
        self,
        link: SerialLink,
        catalog: SignalCatalog,
        store: Optional[StateStore] = None,
        debounce: float = DEBOUNCE_TIME,
        bands: Optional[SpeedBands] = None,
        names: Optional[SignalNames] = None,
        engine: Optional[TransmissionEngine] = None,
        mqtt_enabled: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.link = link
        self.catalog = catalog
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

        initial_state = store.load() if store is not None else None
        if initial_state is not None:
            self.logger.info("Restored fan state: on=%s speed=%s", initial_state.on, initial_state.speed)

        self.engine = engine or TransmissionEngine(link, logger=self.logger)
        self.reconciler = StateReconciler(
            catalog,
            self.engine,
            store=store,
            initial_state=initial_state,
            debounce=debounce,
            bands=bands,
            names=names,
            logger=self.logger,
        )
        self.accessory = FanAccessory(link, self.reconciler, logger=self.logger)

        # MQTT is active automatically once MQTT_HOST is configured.
        if mqtt_enabled is None:
            mqtt_enabled = bool(os.environ.get("MQTT_HOST"))
        self.mqtt_enabled = mqtt_enabled
        self.mqtt: Optional[MqttBridge] = None

        self._stop_event = asyncio.Event()
        self._main_tasks: List[asyncio.Task[Any]] = []

    async def __aenter__(self) -> "FanController":
        await self.link.open()
        if self.mqtt_enabled:
            bridge = MqttBridge(self.accessory, logger=self.logger)
            try:
                await bridge.__aenter__()
            except BaseException:
                await self.link.close()
                raise
            self.mqtt = bridge
            self.link.add_state_listener(self.mqtt.notify_link_state)
            self.reconciler.register_settled_callback(self.mqtt.notify_settled)
            await self.mqtt.publish_status(self.link.is_open)
            await self.mqtt.publish_state(self.reconciler.current.copy())
            self._main_tasks.append(
                asyncio.create_task(self.mqtt.run_command_listener(), name="flipperfan-mqtt")
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        for task in self._main_tasks:
            task.cancel()
        await asyncio.gather(*self._main_tasks, return_exceptions=True)
        self._main_tasks.clear()

        self.reconciler.cancel_pending()
        await self.reconciler.wait_idle()
        await self.link.close()

        if self.mqtt is not None:
            await self.mqtt.__aexit__(exc_type, exc_val, exc_tb)
            self.mqtt = None

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self, timeout: Optional[float] = None) -> None:
        """Blocks until stop() is called or the optional timeout elapses."""
        self.logger.info("Fan controller running on %s", self.link.port)
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.info("Timeout of %ss reached, stopping.", timeout)
