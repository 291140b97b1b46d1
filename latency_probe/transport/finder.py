from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from ..models import DeviceInfo
from .base import DeviceEnumerator

logger = logging.getLogger(__name__)

DeviceSelector = Callable[[List[DeviceInfo]], Optional[DeviceInfo]]


def is_probe_device(
    info: DeviceInfo,
    *,
    vendor_id: Optional[int] = None,
    product_id: Optional[int] = None,
) -> bool:
    """
    Decide whether a given DeviceInfo describes a probe.

    All checks are AND-combined; if a criterion is None, it is ignored.
    """
    if vendor_id is not None and info.vendor_id != vendor_id:
        return False

    if product_id is not None and info.product_id != product_id:
        return False

    return True


def select_probe_device(
    devices: Iterable[DeviceInfo],
    *,
    vendor_id: int,
    product_id: Optional[int] = None,
) -> Optional[DeviceInfo]:
    """
    Pick the first attached device with the probe's vendor id.

    Every candidate is logged so a missing probe can be diagnosed from the log.

    Returns:
        The chosen DeviceInfo, or None if nothing matched.
    """
    devices = list(devices)
    logger.info(f"Looking for probe VID=0x{vendor_id:x}")

    if not devices:
        logger.info("No connected USB devices found")
        return None

    logger.info(f"Found {len(devices)} connected USB devices:")

    chosen: Optional[DeviceInfo] = None
    for info in devices:
        msg = info.describe()
        if chosen is None and is_probe_device(info, vendor_id=vendor_id, product_id=product_id):
            chosen = info
            msg += " <- using this one."
        logger.info(msg)

    return chosen


def find_probe_devices(
    enumerator: DeviceEnumerator,
    *,
    matcher: Optional[Callable[[DeviceInfo], bool]] = None,
    vendor_id: Optional[int] = None,
    product_id: Optional[int] = None,
) -> List[DeviceInfo]:
    """
    Find all attached probes.

    You can either pass a custom `matcher(info) -> bool` or use the
    built-in criteria (vendor_id / product_id).
    """
    results: List[DeviceInfo] = []
    for info in enumerator.list_connected_devices():
        if matcher is not None:
            if matcher(info):
                results.append(info)
        elif is_probe_device(info, vendor_id=vendor_id, product_id=product_id):
            results.append(info)
    return results
