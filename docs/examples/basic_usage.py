import asyncio

from flipperfan import FanController, SerialLink, load_signal_file
from flipperfan.persistence import JsonStateStore


async def main():
    catalog = load_signal_file("fan.ir", required=["Fan_off", "Fan_low", "Fan_med", "Fan_high"])
    link = SerialLink("/dev/ttyACM0")

    async with FanController(link, catalog, store=JsonStateStore("fan_state.json"), mqtt_enabled=False) as controller:
        # Writes within the debounce window collapse into a single IR signal (Fan_high here).
        await controller.accessory.set_speed(80)
        await controller.accessory.set_on(True)
        await controller.run(timeout=2)

asyncio.run(main())
