"""A Python bridge that drives an IR fan through a Flipper Zero on a serial port."""

from .accessory import FanAccessory
from .catalog import SignalCatalog, load_signal_file
from .controller import FanController
from .reconciler import StateReconciler
from .transmitter import TransmissionEngine
from .transport import SerialLink

__all__ = [
    "FanAccessory",
    "FanController",
    "SerialLink",
    "SignalCatalog",
    "StateReconciler",
    "TransmissionEngine",
    "load_signal_file",
]
