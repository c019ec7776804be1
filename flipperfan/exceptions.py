"""Custom exception hierarchy for the flipperfan bridge."""


class FanError(Exception):
    """Base class for all flipperfan-specific errors."""


class FanConnectionError(FanError):
    """Raised when the serial link cannot be opened, written or drained."""


class TransmissionError(FanError):
    """Raised when a single chunk of an IR signal could not be written."""

    def __init__(self, signal_name: str, chunk: int, total_chunks: int, reason: str = "") -> None:
        self.signal_name = signal_name
        self.chunk = chunk
        self.total_chunks = total_chunks
        message = f"Failed to send chunk {chunk}/{total_chunks} of IR signal {signal_name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CommunicationFailure(FanError):
    """Raised by the accessory boundary while the serial link is not open."""


class CatalogError(FanError):
    """Raised when the IR signal file is missing or contains malformed entries."""
