"""Device detection and factory layer.

These mice are clearly based on Sinowealth's design and there are a whole bunch
of others sharing VID 0x258A. Only the models below have been verified; add a
VID/PID here to try another one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import hid

import glorious_protocol as gp


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupportedDevice:
    vendor_id: int
    product_id: int
    name: str


SUPPORTED_DEVICES = (
    SupportedDevice(gp.VENDOR_ID, 0x0033, "Glorious Model D"),
    SupportedDevice(gp.VENDOR_ID, 0x0036, "Glorious Model O/O-"),  # probably works
)


@dataclass(frozen=True)
class DeviceInfo:
    path: str
    name: str
    vendor_id: int
    product_id: int
    interface_number: int
    product: str
    manufacturer: str
    serial: str


def find_device(supported: SupportedDevice) -> Optional[DeviceInfo]:
    """Return the config interface of the first matching device, if any."""
    for item in hid.enumerate(supported.vendor_id, supported.product_id):
        if item["interface_number"] != gp.CONFIG_INTERFACE:
            continue
        path = item["path"]
        return DeviceInfo(
            path=path.decode() if isinstance(path, bytes) else path,
            name=supported.name,
            vendor_id=item["vendor_id"],
            product_id=item["product_id"],
            interface_number=item["interface_number"],
            product=item.get("product_string") or "Unknown",
            manufacturer=item.get("manufacturer_string") or "Unknown",
            serial=item.get("serial_number") or "",
        )
    return None


def list_devices() -> list[DeviceInfo]:
    devices = []
    for supported in SUPPORTED_DEVICES:
        info = find_device(supported)
        if info is not None:
            devices.append(info)
    return devices


def detect_device() -> Optional[DeviceInfo]:
    """Return the first supported device found, in SUPPORTED_DEVICES order."""
    for supported in SUPPORTED_DEVICES:
        info = find_device(supported)
        if info is not None:
            log.info("Detected %s", info.name)
            return info
    return None


def create_device(info: DeviceInfo) -> gp.GloriousDevice:
    return gp.GloriousDevice(info.path)
