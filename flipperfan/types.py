"""Shared dataclasses for the flipperfan bridge."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Protocol, Tuple

from .constants import (
    HIGH_THRESHOLD,
    MAX_SPEED,
    MEDIUM_THRESHOLD,
    SIGNAL_HIGH,
    SIGNAL_LOW,
    SIGNAL_MEDIUM,
    SIGNAL_POWER_OFF,
)


@dataclass(frozen=True, slots=True)
class IRSignal:
    """Raw IR waveform as recorded by the Flipper (microsecond mark/space durations)."""

    name: str
    frequency: int
    duty_cycle: float
    samples: Tuple[int, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.frequency <= 0:
            raise ValueError(f"Signal {self.name}: frequency must be positive, got {self.frequency}")
        if not 0 <= self.duty_cycle <= 100:
            raise ValueError(f"Signal {self.name}: duty cycle must be within 0..100, got {self.duty_cycle}")
        if not self.samples:
            raise ValueError(f"Signal {self.name}: no samples")
        if any(sample < 0 for sample in self.samples):
            raise ValueError(f"Signal {self.name}: samples must be non-negative")


@dataclass(slots=True)
class AccessoryState:
    """Desired fan state as last requested by the host."""

    on: bool = False
    speed: int = 0

    def copy(self) -> "AccessoryState":
        return replace(self)

    def to_dict(self) -> dict:
        return {"on": self.on, "speed": self.speed}


class ConnectionState(str, Enum):
    """Lifecycle of the serial link."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class SpeedBands:
    """Thresholds mapping a 0..100 rotation speed onto the remote's three buttons."""

    medium: int = MEDIUM_THRESHOLD
    high: int = HIGH_THRESHOLD

    def __post_init__(self) -> None:
        if not 0 < self.medium < self.high <= MAX_SPEED:
            raise ValueError(
                f"Invalid speed thresholds: expected 0 < medium < high <= {MAX_SPEED}, "
                f"got medium={self.medium}, high={self.high}"
            )


@dataclass(frozen=True, slots=True)
class SignalNames:
    """Names of the IR file entries used to drive the fan."""

    power_off: str = SIGNAL_POWER_OFF
    low: str = SIGNAL_LOW
    medium: str = SIGNAL_MEDIUM
    high: str = SIGNAL_HIGH

    def required(self) -> Tuple[str, ...]:
        return (self.power_off, self.low, self.medium, self.high)


class StateStore(Protocol):
    """Protocol for persisting the accessory state across restarts."""

    def load(self) -> Optional[AccessoryState]:
        """Return the last saved state, or None if there is none."""
        ...

    def save(self, state: AccessoryState) -> None:
        """Persist the given state."""
        ...
