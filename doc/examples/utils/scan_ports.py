# doc/examples/utils/scan_ports.py
"""Example script listing serial ports to find the one the card reader is on."""

import logging
from typing import List

from card_reader.utils.serial_scanner import scan_serial_ports, find_reader_ports, PortInfo

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)

def display_ports(ports: List[PortInfo]):
    if not ports:
        print("  No ports found.")
        return

    print(f"  Found {len(ports)} ports:")
    for p in ports:
        print(f"\n  Device:       {p.device}")
        print(f"    Description:  {p.description}")
        print(f"    HWID:         {p.hwid}")
        if p.vid is not None and p.pid is not None:
            print(f"    VID:PID:      {p.vid:04X}:{p.pid:04X}")
        if p.manufacturer:
            print(f"    Manufacturer: {p.manufacturer}")
        status_str = "Accessible" if p.accessible else f"Not Accessible ({p.error})"
        print(f"    Status:       {status_str}")


if __name__ == '__main__':
    print("--- Serial Port Scanner Example ---")
    ports = scan_serial_ports(check_access=True)
    display_ports(ports)

    usb_ports = find_reader_ports(ports, description_contains="usb")
    print(f"\nUSB serial ports worth trying with CardReaderClient.open(): {usb_ports or 'none'}")
