# card_reader/utils/serial_scanner.py
"""Utility to list serial ports and pick out the ones a card reader may sit on."""

import logging
import serial
import serial.tools.list_ports
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

@dataclass
class PortInfo:
    """Represents information about a detected serial port."""
    device: str                   # Port name passed to CardReaderClient.open (e.g., COM3, /dev/ttyACM0)
    description: str              # Human-readable description
    hwid: str                     # Hardware ID string
    vid: Optional[int] = None     # USB vendor ID
    pid: Optional[int] = None     # USB product ID
    serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    accessible: bool = False      # Whether the port could be opened successfully
    error: Optional[str] = None   # Error message if opening failed

def _check_port_access(port_name: str) -> tuple[bool, Optional[str]]:
    """Tries to open a port to check accessibility.

    Returns:
        A tuple (accessible, error_message).
    """
    try:
        s = serial.Serial(port=port_name, timeout=0.1)
        s.close()
        return True, None
    except serial.SerialException as e:
        err_msg = str(e)
        if "Permission denied" in err_msg or "Access is denied" in err_msg:
            return False, "Permission denied"
        elif "could not be found" in err_msg or "No such file" in err_msg:
            return False, "Device not found"
        elif "busy" in err_msg.lower():
            return False, "Busy"
        logger.debug(f"SerialException checking port {port_name}: {e}")
        return False, f"Cannot open ({type(e).__name__})"
    except OSError as e:
        logger.warning(f"OS error checking port {port_name}: {e}")
        return False, f"Unexpected error ({type(e).__name__})"

def _optional_str(value) -> Optional[str]:
    return str(value) if value is not None else None

def scan_serial_ports(check_access: bool = True) -> List[PortInfo]:
    """Scans for available serial ports.

    Args:
        check_access: If True, briefly opens each port to see whether it is usable.
                      Do not use it on a port a client currently holds open.
    """
    ports_found: List[PortInfo] = []

    for port in serial.tools.list_ports.comports():
        device = str(port.device) if port.device is not None else ""
        accessible, access_error = False, None
        if check_access and device:
            accessible, access_error = _check_port_access(device)
            logger.debug(f"Access check for {device}: Accessible={accessible}, Error={access_error}")

        ports_found.append(PortInfo(
            device=device,
            description=str(port.description or ""),
            hwid=str(port.hwid or ""),
            vid=port.vid,
            pid=port.pid,
            serial_number=_optional_str(port.serial_number),
            manufacturer=_optional_str(port.manufacturer),
            accessible=accessible,
            error=access_error,
        ))

    logger.info(f"Scan complete. Found {len(ports_found)} ports.")
    return ports_found

def find_reader_ports(
    ports: Optional[List[PortInfo]] = None,
    vid: Optional[int] = None,
    pid: Optional[int] = None,
    description_contains: Optional[str] = None,
) -> List[str]:
    """Returns the device names of ports matching every given criterion.

    Args:
        ports: Result of a previous scan; scans (without access check) if omitted.
        vid: USB vendor ID the reader enumerates with.
        pid: USB product ID the reader enumerates with.
        description_contains: Case-insensitive substring of the port description.
    """
    if ports is None:
        ports = scan_serial_ports(check_access=False)

    matches = []
    for p in ports:
        if vid is not None and p.vid != vid:
            continue
        if pid is not None and p.pid != pid:
            continue
        if description_contains and description_contains.lower() not in p.description.lower():
            continue
        matches.append(p.device)
    return matches
