"""Debounces property writes and turns settled state changes into IR signals."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from .catalog import SignalCatalog
from .constants import DEBOUNCE_TIME, MAX_SPEED
from .transmitter import TransmissionEngine
from .types import AccessoryState, IRSignal, SignalNames, SpeedBands, StateStore

SettledCallback = Callable[[AccessoryState], None]


class Property(str, Enum):
    ON = "on"
    SPEED = "speed"


def select_band(speed: int, bands: SpeedBands, names: SignalNames) -> str:
    """Returns the signal name for the speed band that ``speed`` falls into."""
    if speed < bands.medium:
        return names.low
    if speed < bands.high:
        return names.medium
    return names.high


def decide_signal(
    current: AccessoryState,
    previous: AccessoryState,
    bands: SpeedBands,
    names: SignalNames,
) -> Optional[str]:
    """Returns the name of the signal needed to go from ``previous`` to ``current``, if any."""
    if current.on != previous.on:
        if current.on:
            return select_band(current.speed, bands, names)
        return names.power_off
    if current.on and current.speed != previous.speed:
        return select_band(current.speed, bands, names)
    return None


class StateReconciler:
    """Holds the desired fan state and commits it once writes have settled.

    Each property has its own debounce slot; a write cancels whatever is
    pending in that slot. When a slot fires, the whole ``current`` state is
    compared with ``previous`` (the last state a decision was made for), so
    two slots firing back to back produce at most one transmission.
    """

    def __init__(
        self,
        catalog: SignalCatalog,
        engine: TransmissionEngine,
        store: Optional[StateStore] = None,
        initial_state: Optional[AccessoryState] = None,
        debounce: float = DEBOUNCE_TIME,
        bands: Optional[SpeedBands] = None,
        names: Optional[SignalNames] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.catalog = catalog
        self.engine = engine
        self.store = store
        self.debounce = debounce
        self.bands = bands or SpeedBands()
        self.names = names or SignalNames()
        self.logger = logger or logging.getLogger(__name__)

        self.catalog.require(self.names.required())

        self.current = initial_state.copy() if initial_state else AccessoryState()
        self.previous = self.current.copy()

        self._timers: Dict[Property, Optional[asyncio.TimerHandle]] = {prop: None for prop in Property}
        self._transmissions: Set[asyncio.Task[Any]] = set()
        self._settled_callbacks: List[SettledCallback] = []

    def register_settled_callback(self, callback: SettledCallback) -> None:
        """Registers a callback receiving the state snapshot after every settle."""
        self._settled_callbacks.append(callback)

    @property
    def pending(self) -> bool:
        return any(handle is not None for handle in self._timers.values())

    def apply(self, updates: Mapping[Union[str, Property], Any]) -> None:
        """Writes the updates into ``current`` and (re)arms their debounce timers.

        Raises:
            ValueError: For unknown properties or out-of-range values. Nothing is
                applied in that case.
        """
        validated = {}
        for key, value in updates.items():
            try:
                prop = Property(key)
            except ValueError:
                raise ValueError(f"Unknown fan property: {key!r}") from None
            validated[prop] = self._validate(prop, value)

        loop = asyncio.get_running_loop()
        for prop, value in validated.items():
            setattr(self.current, prop.value, value)
            self._cancel_timer(prop)
            self._timers[prop] = loop.call_later(self.debounce, self._settle, prop)

    @staticmethod
    def _validate(prop: Property, value: Any) -> Union[bool, int]:
        if prop is Property.ON:
            return bool(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Speed must be an integer, got {value!r}")
        if not 0 <= value <= MAX_SPEED:
            raise ValueError(f"Speed must be within 0..{MAX_SPEED}, got {value}")
        return value

    def _cancel_timer(self, prop: Property) -> None:
        handle = self._timers[prop]
        if handle is not None:
            handle.cancel()
            self._timers[prop] = None

    def cancel_pending(self) -> None:
        """Drops all pending debounce timers without committing them."""
        for prop in Property:
            self._cancel_timer(prop)

    def _settle(self, prop: Property) -> None:
        self._timers[prop] = None
        snapshot = self.current.copy()

        if self.store is not None:
            try:
                self.store.save(snapshot)
            except OSError as exc:
                self.logger.error("Failed to persist fan state: %s", exc)

        name = decide_signal(snapshot, self.previous, self.bands, self.names)
        if name is not None:
            self._dispatch(self.catalog[name])
        else:
            self.logger.debug("State settled on %s without change, nothing to send", snapshot)

        # Tracks the last intended state; delivery is never confirmed by the device.
        self.previous = snapshot

        for callback in list(self._settled_callbacks):
            try:
                callback(snapshot)
            except Exception:
                self.logger.exception("Error in settled callback")

    def _dispatch(self, signal: IRSignal) -> None:
        task = asyncio.create_task(self.engine.send(signal), name=f"flipperfan-send-{signal.name}")
        self._transmissions.add(task)
        task.add_done_callback(self._transmissions.discard)

    async def wait_idle(self) -> None:
        """Waits for every transmission started so far to finish."""
        while self._transmissions:
            await asyncio.gather(*list(self._transmissions), return_exceptions=True)
