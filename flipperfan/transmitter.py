"""Chunked, retried IR transmission over the Flipper CLI."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import List, Optional

from .constants import IR_CHUNK_DELAY, IR_CHUNK_SIZE, IR_SIGNAL_SEND_TRIES
from .exceptions import FanConnectionError, TransmissionError
from .transport import SerialLink
from .types import IRSignal


def format_command(signal: IRSignal, samples) -> str:
    """Builds one ``ir tx RAW`` CLI line for the given samples."""
    data = " ".join(str(sample) for sample in samples)
    return f"ir tx RAW F:{signal.frequency} DC:{signal.duty_cycle:g} {data}\r\n"


def build_commands(signal: IRSignal, chunk_size: int = IR_CHUNK_SIZE) -> List[str]:
    """Splits a signal into CLI commands of at most ``chunk_size`` samples each."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    samples = signal.samples
    return [
        format_command(signal, samples[start:start + chunk_size])
        for start in range(0, len(samples), chunk_size)
    ]


class TransmissionEngine:
    """Sends IR signals through a :class:`SerialLink`, one signal at a time.

    IR output from the Flipper is not reliable and the CLI gives no
    acknowledgment, so every signal is sent ``tries`` times. A failed chunk
    abandons only the current attempt; the next attempt starts over from the
    first chunk. Errors are logged and never raised to the caller.
    """

    def __init__(
        self,
        link: SerialLink,
        tries: int = IR_SIGNAL_SEND_TRIES,
        chunk_size: int = IR_CHUNK_SIZE,
        chunk_delay: float = IR_CHUNK_DELAY,
        stop_on_success: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if tries < 1:
            raise ValueError(f"tries must be at least 1, got {tries}")
        self.link = link
        self.tries = tries
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.stop_on_success = stop_on_success
        self.logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def send(self, signal: IRSignal) -> None:
        self.logger.info("Will send IR signal: %s", signal.name)
        if not self.link.is_open:
            self.logger.warning("Serial port is not open. Cannot send IR signal %s", signal.name)
            return

        commands = build_commands(signal, self.chunk_size)
        total_chunks = math.ceil(len(signal.samples) / self.chunk_size)

        async with self._lock:
            delivered = 0
            for attempt in range(1, self.tries + 1):
                self.logger.debug("Sending IR signal %s, try (%d/%d)", signal.name, attempt, self.tries)
                try:
                    await self._send_attempt(signal, commands, total_chunks, attempt)
                except TransmissionError as exc:
                    self.logger.error("%s (try %d/%d)", exc, attempt, self.tries)
                    continue
                delivered += 1
                if self.stop_on_success:
                    break

            if not delivered:
                self.logger.error(
                    "Giving up on IR signal %s after %d failed tries", signal.name, self.tries
                )

    async def _send_attempt(
        self, signal: IRSignal, commands: List[str], total_chunks: int, attempt: int
    ) -> None:
        for index, command in enumerate(commands, start=1):
            try:
                if self.link.write(command):
                    self.logger.debug(
                        "Draining serial port after chunk %d/%d of %s, try (%d/%d)",
                        index, total_chunks, signal.name, attempt, self.tries,
                    )
                    await self.link.drain()
            except FanConnectionError as exc:
                raise TransmissionError(signal.name, index, total_chunks, str(exc)) from exc
            await asyncio.sleep(self.chunk_delay)
