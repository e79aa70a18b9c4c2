"""Disk-space query service."""

import logging
from dataclasses import dataclass
from typing import List

import psutil

logger = logging.getLogger("comfy_desktop.detection")


@dataclass
class DiskInfo:
    """A mounted filesystem."""
    mount: str
    available: int  # bytes


def list_disks() -> List[DiskInfo]:
    """Enumerate mounted filesystems with their free space.

    Mounts that cannot be queried (empty card readers, permission errors)
    are skipped.
    """
    disks = []
    for partition in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError as e:
            logger.debug(f"Skipping mount {partition.mountpoint}: {e}")
            continue
        disks.append(DiskInfo(mount=partition.mountpoint, available=usage.free))
    return disks
