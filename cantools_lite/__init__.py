"""CAN frame formats, log converters and ISO-TP / SAE J1939 tools for SocketCAN."""

__version__ = "0.1.0"