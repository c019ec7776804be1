import logging
from typing import Optional

from .exceptions import CommunicationFailure
from .reconciler import Property, StateReconciler
from .transport import SerialLink


class FanAccessory:
    """Host-facing fan with ``On`` and ``RotationSpeed`` characteristics.

    Every call fails with :class:`CommunicationFailure` while the serial link
    is down so the host can show the fan as unreachable.
    """

    def __init__(
        self,
        link: SerialLink,
        reconciler: StateReconciler,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.link = link
        self.reconciler = reconciler
        self.logger = logger or logging.getLogger(__name__)

    def _ensure_connected(self) -> None:
        if not self.link.is_open:
            raise CommunicationFailure(f"Serial port {self.link.port} is not open")

    async def set_on(self, value: bool) -> None:
        self.logger.debug("Set On state -> %s", value)
        self._ensure_connected()
        self.reconciler.apply({Property.ON: value})

    async def get_on(self) -> bool:
        is_on = self.reconciler.current.on
        self.logger.debug("Get On state -> %s", is_on)
        self._ensure_connected()
        return is_on

    async def set_speed(self, value: int) -> None:
        self.logger.debug("Set Speed -> %s", value)
        self._ensure_connected()
        self.reconciler.apply({Property.SPEED: value})

    async def get_speed(self) -> int:
        speed = self.reconciler.current.speed
        self.logger.debug("Get Speed -> %s", speed)
        self._ensure_connected()
        return speed
