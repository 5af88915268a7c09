"""Helper utilities for the card_reader library."""

from .serial_scanner import PortInfo, scan_serial_ports, find_reader_ports

__all__ = ['PortInfo', 'scan_serial_ports', 'find_reader_ports']
