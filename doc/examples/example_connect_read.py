# doc/examples/example_connect_read.py

import asyncio
import logging

from card_reader import CardReaderClient, ConnectionStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
)
logger = logging.getLogger("ConnectReadExample")

# --- Configuration ---
# Windows: check Device Manager for the COM number. Linux: usually /dev/ttyACM0 or /dev/ttyUSB0.
SERIAL_PORT = 'COM3'
SERIAL_BAUD_RATE = 115200


def on_raw_line(line: str):
    logger.info(f"RAW  {line}")

def on_status(code: str):
    logger.info(f"STATUS  {code}")

async def on_card(card_id: str):
    """Called for every card the reader reports."""
    logger.info(f"CARD  {card_id}")


async def main():
    client = CardReaderClient()

    def status_changed(status: ConnectionStatus):
        logger.info(f"Connection status: {status}")
    client.set_status_change_callback(status_changed)
    client.register_error_callback(lambda e: logger.warning(f"Command not delivered: {e}"))

    client.register_raw_line_callback(on_raw_line)
    client.register_status_callback(on_status)
    client.register_card_id_callback(on_card)

    async with client:
        logger.info(f"Opening {SERIAL_PORT} (waits for the reader to boot)...")
        await client.open(SERIAL_PORT, SERIAL_BAUD_RATE)

        logger.info("Touch a card on the reader. Reading for 15 seconds...")
        await asyncio.sleep(15)

        # Closing before a latency-sensitive phase avoids timeout noise on the port;
        # the next send() reopens the same port on its own.
        await client.close()
        delivered = await client.send("PING")
        logger.info(f"PING delivered after implicit reopen: {delivered}")
        await asyncio.sleep(2)

    logger.info("Connection closed.")

if __name__ == "__main__":
    asyncio.run(main())
