"""
Registry Module - Black Box Interface

Purpose: Provision registries and devices, read device state
Interface: DeviceManagerClient
Hidden: REST resource layout, credential encoding
"""

from .client import DeviceManagerClient

__all__ = ["DeviceManagerClient"]
