"""Fingerprint/RFID access terminal control."""

__version__ = "0.1.0"
