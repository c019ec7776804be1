"""
Loader for Flipper Zero ``.ir`` signal files.

A file looks like this::

    Filetype: IR signals file
    Version: 1
    #
    name: Fan_off
    type: raw
    frequency: 38000
    duty_cycle: 0.330000
    data: 9024 4496 570 540 ...

Every ``name:`` line starts a new entry. Only ``raw`` entries can be replayed
through ``ir tx RAW``; ``parsed`` entries are skipped.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .exceptions import CatalogError
from .types import IRSignal

logger = logging.getLogger(__name__)


class SignalCatalog(Mapping):
    """Read-only mapping from signal name to :class:`IRSignal`."""

    def __init__(self, signals: Iterable[IRSignal]) -> None:
        self._signals: Dict[str, IRSignal] = {}
        for signal in signals:
            if signal.name in self._signals:
                raise CatalogError(f"Duplicate IR signal name: {signal.name}")
            self._signals[signal.name] = signal

    def __getitem__(self, name: str) -> IRSignal:
        return self._signals[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._signals)

    def __len__(self) -> int:
        return len(self._signals)

    def __repr__(self) -> str:
        return f"SignalCatalog({sorted(self._signals)!r})"

    def require(self, names: Iterable[str]) -> None:
        """Raise CatalogError unless every name is present."""
        missing = [name for name in names if name not in self._signals]
        if missing:
            raise CatalogError(
                f"Missing required IR signal(s): {', '.join(missing)} "
                f"(available: {', '.join(sorted(self._signals)) or 'none'})"
            )


def _build_signal(entry: Dict[str, str], source: str) -> Optional[IRSignal]:
    name = entry["name"]
    signal_type = entry.get("type", "raw").lower()
    if signal_type != "raw":
        logger.debug("Skipping non-raw IR signal %s (type=%s) in %s", name, signal_type, source)
        return None

    for key in ("frequency", "duty_cycle", "data"):
        if key not in entry:
            raise CatalogError(f"IR signal {name} in {source} has no '{key}' field")

    try:
        frequency = int(entry["frequency"])
        # The file stores the duty cycle as a fraction, the CLI expects percent.
        duty_cycle = float(entry["duty_cycle"]) * 100
        samples = tuple(int(value) for value in entry["data"].split())
    except ValueError as exc:
        raise CatalogError(f"IR signal {name} in {source} is malformed: {exc}") from exc

    try:
        return IRSignal(name=name, frequency=frequency, duty_cycle=duty_cycle, samples=samples)
    except ValueError as exc:
        raise CatalogError(str(exc)) from exc


def parse_signals(content: str, source: str = "<string>") -> SignalCatalog:
    """Parse the text of an ``.ir`` file into a catalog."""
    entries: List[Dict[str, str]] = []
    current: Optional[Dict[str, str]] = None

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "name":
            current = {"name": value}
            entries.append(current)
        elif current is not None:
            current[key] = value

    signals = []
    for entry in entries:
        signal = _build_signal(entry, source)
        if signal is not None:
            signals.append(signal)

    catalog = SignalCatalog(signals)
    logger.debug("Parsed %d IR signal(s) from %s", len(catalog), source)
    return catalog


def load_signal_file(path: Union[str, Path], required: Iterable[str] = ()) -> SignalCatalog:
    """
    Load and validate an ``.ir`` file.

    Args:
        path: Location of the file.
        required: Signal names that must be present.

    Returns:
        The parsed catalog.

    Raises:
        CatalogError: If the file cannot be read, an entry is malformed or a
            required signal is missing.
    """
    file_path = Path(path)
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CatalogError(f"Cannot read IR file {file_path}: {exc}") from exc

    catalog = parse_signals(content, source=str(file_path))
    catalog.require(required)
    logger.info("Loaded %d IR signal(s) from %s", len(catalog), file_path)
    return catalog
