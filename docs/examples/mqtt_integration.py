import asyncio

from flipperfan import FanController, SerialLink, load_signal_file


async def main():
    catalog = load_signal_file("fan.ir")
    async with FanController(SerialLink("/dev/ttyACM0"), catalog) as controller:
        # MQTT is active automatically when MQTT_HOST is set.
        # Publish "on"/"off" to flipperfan/commands/on or 0-100 to flipperfan/commands/speed.
        await controller.run()

asyncio.run(main())
