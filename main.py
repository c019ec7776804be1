import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from flipperfan.catalog import load_signal_file
from flipperfan.constants import DEFAULT_BAUDRATE, RECONNECT_INTERVAL
from flipperfan.controller import FanController
from flipperfan.exceptions import CatalogError
from flipperfan.persistence import DEFAULT_STATE_FILE, JsonStateStore
from flipperfan.transport import SerialLink
from flipperfan.types import SignalNames


def initialize_logging(log_level_str: str):
    """Configures logging from a level name such as ``DEBUG``."""
    level = getattr(logging, log_level_str.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # basicConfig is a no-op on repeated calls, so set the root level explicitly.
    logging.getLogger().setLevel(level)


initialize_logging(os.environ.get("LOG_LEVEL", "INFO"))

logger = logging.getLogger("main")


async def _async_run(args: argparse.Namespace):
    try:
        catalog = load_signal_file(args.ir_file, required=SignalNames().required())
    except CatalogError as e:
        logger.error(f"Cannot load IR signals: {e}")
        sys.exit(1)

    link = SerialLink(port=args.serial, baudrate=args.baud, reconnect_interval=args.reconnect_interval)
    store = JsonStateStore(args.state_file)
    controller = FanController(link=link, catalog=catalog, store=store, logger=logger)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass

    logger.info(f"Opening serial port {args.serial} at {args.baud} baud...")
    async with controller:
        await controller.run(timeout=args.timeout)
    logger.info("Stopped.")


def main():
    # CLI arguments override values from .env and the environment.
    load_dotenv()

    DEFAULT_SERIAL_PORT = os.environ.get("FLIPPERFAN_SERIAL_PORT")
    DEFAULT_BAUD = int(os.environ.get("FLIPPERFAN_BAUD", DEFAULT_BAUDRATE))
    DEFAULT_IR_FILE = os.environ.get("FLIPPERFAN_IR_FILE")
    DEFAULT_STATE = os.environ.get("FLIPPERFAN_STATE_FILE", DEFAULT_STATE_FILE)
    DEFAULT_LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    parser = argparse.ArgumentParser(description="Drive an IR fan through a Flipper Zero")
    parser.add_argument("--serial", default=DEFAULT_SERIAL_PORT, required=DEFAULT_SERIAL_PORT is None,
                        help=f"Serial port of the Flipper (e.g. /dev/ttyACM0). Default: {DEFAULT_SERIAL_PORT or 'none'}")
    parser.add_argument("--baud", type=int, default=DEFAULT_BAUD, help=f"Baud rate (default: {DEFAULT_BAUD})")
    parser.add_argument("--ir-file", default=DEFAULT_IR_FILE, required=DEFAULT_IR_FILE is None,
                        help=f"Flipper .ir file with the fan signals. Default: {DEFAULT_IR_FILE or 'none'}")
    parser.add_argument("--state-file", default=DEFAULT_STATE, help=f"Where the fan state is stored (default: {DEFAULT_STATE})")
    parser.add_argument("--reconnect-interval", type=float, default=RECONNECT_INTERVAL,
                        help=f"Seconds between reconnect attempts (default: {RECONNECT_INTERVAL})")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help=f"Logging level. Default: {DEFAULT_LOG_LEVEL}")
    parser.add_argument("--timeout", type=float, default=None, help="Stop after N seconds (optional)")

    args = parser.parse_args()

    initialize_logging(args.log_level)
    logger.debug(f"Logging level set to {args.log_level.upper()}.")

    try:
        asyncio.run(_async_run(args))
    except KeyboardInterrupt:
        logger.info("Stopped by KeyboardInterrupt.")


if __name__ == "__main__":
    main()
