from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import serial
import serial_asyncio

from .constants import DEFAULT_BAUDRATE, READ_CHUNK_SIZE, RECONNECT_INTERVAL
from .exceptions import FanConnectionError
from .types import ConnectionState

OpenConnection = Callable[..., Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]
StateListener = Callable[[ConnectionState], None]


class SerialLink:
    """Owns the serial handle to the Flipper and keeps it alive.

    The link never raises on open failures, read errors or an unexpected close.
    Instead it moves to ``RECONNECTING`` and retries every ``reconnect_interval``
    seconds until a new handle opens. Only one reconnect task exists at a time.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        reconnect_interval: float = RECONNECT_INTERVAL,
        open_connection: Optional[OpenConnection] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.reconnect_interval = reconnect_interval
        self.logger = logger or logging.getLogger(__name__)
        self._open_connection = open_connection or serial_asyncio.open_serial_connection

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task[Any]] = None
        self._reconnect_task: Optional[asyncio.Task[Any]] = None
        self._init_lock = asyncio.Lock()
        # Bumped on every teardown so stale reads and drains can tell their handle is gone.
        self._generation = 0
        self._state = ConnectionState.CLOSED
        self._closing = False
        self._buffer = ""
        self._state_listeners: List[StateListener] = []

    async def __aenter__(self) -> "SerialLink":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def reconnect_task(self) -> Optional[asyncio.Task[Any]]:
        return self._reconnect_task

    def add_state_listener(self, listener: StateListener) -> None:
        """Registers a callback invoked with the new state on every transition."""
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self.logger.debug("Serial link %s: %s -> %s", self.port, self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                self.logger.exception("Error in serial state listener")

    async def open(self) -> bool:
        """Opens the port. On failure a reconnect is scheduled and False is returned."""
        self._closing = False
        return await self.reinitialize()

    async def reinitialize(self) -> bool:
        """Tears down the current handle (if any) and opens a fresh one."""
        async with self._init_lock:
            self._teardown()
            self._set_state(ConnectionState.OPENING)
            try:
                reader, writer = await self._open_connection(url=self.port, baudrate=self.baudrate)
            except (serial.SerialException, OSError, ValueError) as exc:
                self.logger.error("Failed to open serial port %s: %s", self.port, exc)
                self._handle_failure()
                return False

            if self._closing:
                writer.close()
                self._set_state(ConnectionState.CLOSED)
                return False

            self._reader = reader
            self._writer = writer
            self._buffer = ""
            self._set_state(ConnectionState.OPEN)
            self.logger.info("Serial port %s opened successfully", self.port)
            self._cancel_reconnect()
            self._reader_task = asyncio.create_task(
                self._read_loop(reader, self._generation), name="flipperfan-reader"
            )
            return True

    async def close(self) -> None:
        self._closing = True
        self._cancel_reconnect()
        self._teardown()
        self._set_state(ConnectionState.CLOSED)
        self.logger.info("Serial port %s closed", self.port)

    def write(self, command: str) -> bool:
        """Queues a command on the port.

        Returns:
            True if bytes are still buffered in the OS transport and the caller
            should ``drain()`` before sending more.

        Raises:
            FanConnectionError: If the port is not open or the write fails.
        """
        writer = self._require_writer()
        try:
            writer.write(command.encode("ascii"))
        except (serial.SerialException, OSError) as exc:
            self.logger.error("Error writing to serial port: %s", exc)
            raise FanConnectionError(f"Error writing to serial port: {exc}") from exc
        return writer.transport.get_write_buffer_size() > 0

    async def drain(self) -> None:
        """Waits until the OS send buffer is flushed.

        Raises:
            FanConnectionError: If draining fails or the handle is torn down meanwhile.
        """
        writer = self._require_writer()
        generation = self._generation
        try:
            await writer.drain()
        except (serial.SerialException, OSError) as exc:
            self.logger.error("Error draining serial port: %s", exc)
            raise FanConnectionError(f"Error draining serial port: {exc}") from exc
        if generation != self._generation:
            raise FanConnectionError("Serial port was reinitialized while draining")

    def _require_writer(self) -> asyncio.StreamWriter:
        writer = self._writer
        if not self.is_open or writer is None or writer.is_closing():
            raise FanConnectionError(f"Serial port {self.port} is not open")
        return writer

    def _teardown(self) -> None:
        self._generation += 1
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None and not writer.is_closing():
            try:
                writer.close()
            except (serial.SerialException, OSError) as exc:
                self.logger.error("Error cleaning up serial port: %s", exc)

    def _handle_failure(self) -> None:
        self._teardown()
        if self._closing:
            self._set_state(ConnectionState.CLOSED)
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_reconnect()

    def _on_error(self, exc: BaseException) -> None:
        self.logger.error("Serial port error: %s", exc)
        self._handle_failure()

    def _on_close(self) -> None:
        self.logger.warning("Serial port closed")
        self._handle_failure()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="flipperfan-reconnect")

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_loop(self) -> None:
        try:
            while not self._closing:
                await asyncio.sleep(self.reconnect_interval)
                self.logger.info("Attempting to reconnect to serial port %s...", self.port)
                if await self.reinitialize():
                    return
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _read_loop(self, reader: asyncio.StreamReader, generation: int) -> None:
        # Nothing the Flipper prints is needed, but it stops accepting input
        # after 10-15 commands if its output is never consumed.
        try:
            while True:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                self._consume(data)
        except (serial.SerialException, OSError) as exc:
            if generation == self._generation:
                self._on_error(exc)
            return

        if generation == self._generation:
            self._on_close()

    def _consume(self, data: bytes) -> None:
        self._buffer += data.decode("ascii", errors="replace")
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self.logger.debug("Received serial response: %s", line.strip())
