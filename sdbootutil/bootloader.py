# Copyright sdbootutil developers
#
# sdbootutil/bootloader.py - Boot loader detection
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.bootloader`` module locates the boot loader images
staged inside a snapshot and decides which boot loader a snapshot
carries.

Two boot loaders are recognised: systemd-boot and GRUB2 with Boot
Loader Specification support. Each is looked up at a primary location
and at an older fallback location. Detection is asymmetric: a snapshot
carries systemd-boot only if the GRUB2 image is absent, while the GRUB2
image alone is enough to select GRUB2. When neither rule selects a boot
loader an error is raised: there is no default.

No function in this module modifies the file system.
"""
from os.path import exists as path_exists
import logging

from sdbootutil import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_DETECT)

_log_debug = _log.debug
_log_debug_detect = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: systemd-boot image locations, primary first. Formatted with the
#: firmware architecture (for e.g. "x64", "aa64").
_SDBOOT_PATHS = [
    "usr/lib/systemd-boot/systemd-boot%s.efi",
    "usr/lib/systemd/boot/efi/systemd-boot%s.efi",
]

#: GRUB2 image locations, primary first. Formatted with the host
#: architecture (for e.g. "x86_64", "aarch64").
_GRUB2_PATHS = [
    "usr/share/efi/%s/grub.efi",
    "usr/share/grub2/%s-efi/grub.efi",
]

#: Map boot loader kinds to their boot destination on the ESP.
BOOT_DESTINATIONS = {
    BOOTLOADER_SYSTEMD_BOOT: SYSTEMD_BOOT_DST,
    BOOTLOADER_GRUB2: GRUB2_BOOT_DST,
}


class BootloaderError(SdbootError):
    """Exception raised when the boot loader of a snapshot cannot be
    determined.
    """

    @staticmethod
    def not_detected():
        return BootloaderError("Bootloader not detected")

    @staticmethod
    def unsupported():
        return BootloaderError(
            "Unsupported bootloader or unable to determine bootloader"
        )

    @staticmethod
    def unknown_kind(kind):
        return BootloaderError(f"Unknown bootloader kind: {kind}")


def _first_existing(candidates):
    """Return the first path in ``candidates`` that exists, or the last
    candidate if none exist.
    """
    for candidate in candidates:
        if path_exists(candidate):
            _log_debug_detect("found boot loader image '%s'", candidate)
            return candidate
    _log_debug_detect("no boot loader image at '%s'", "', '".join(candidates))
    return candidates[-1]


def find_sdboot(snapshot, firmware_arch, prefix=None):
    """Return the path to the systemd-boot image in ``snapshot``.

    The primary location is returned if it exists, otherwise the
    fallback location is returned whether or not it exists.

    :param snapshot: a ``SnapshotRef``, snapshot number, or ``None``
    :param firmware_arch: the EFI firmware architecture name
    :param prefix: an optional substitute file system root
    :rtype: str
    """
    candidates = [
        snapshot_path(snapshot, fmt % firmware_arch, prefix=prefix)
        for fmt in _SDBOOT_PATHS
    ]
    return _first_existing(candidates)


def find_grub2(snapshot, prefix=None):
    """Return the path to the GRUB2 image in ``snapshot``.

    GRUB2 images are installed per host architecture rather than per
    firmware architecture, so ``HOST_ARCH`` is used for the lookup.
    The fallback path is returned if neither location exists.

    :param snapshot: a ``SnapshotRef``, snapshot number, or ``None``
    :param prefix: an optional substitute file system root
    :rtype: str
    """
    candidates = [
        snapshot_path(snapshot, fmt % HOST_ARCH, prefix=prefix)
        for fmt in _GRUB2_PATHS
    ]
    return _first_existing(candidates)


def locate_bootloader(kind, snapshot, firmware_arch, prefix=None):
    """Return the image path for boot loader ``kind`` in ``snapshot``."""
    if kind == BOOTLOADER_SYSTEMD_BOOT:
        return find_sdboot(snapshot, firmware_arch, prefix=prefix)
    if kind == BOOTLOADER_GRUB2:
        return find_grub2(snapshot, prefix=prefix)
    raise BootloaderError.unknown_kind(kind)


def is_sdboot(snapshot, firmware_arch, prefix=None):
    """Return ``True`` if ``snapshot`` carries systemd-boot and no
    GRUB2 image.
    """
    sdboot = path_exists(find_sdboot(snapshot, firmware_arch, prefix=prefix))
    grub2 = path_exists(find_grub2(snapshot, prefix=prefix))
    return sdboot and not grub2


def is_grub2(snapshot, prefix=None):
    """Return ``True`` if ``snapshot`` carries a GRUB2 image."""
    return path_exists(find_grub2(snapshot, prefix=prefix))


def classify_bootloader(snapshot, firmware_arch, prefix=None):
    """Return the boot loader kind carried by ``snapshot``.

    :returns: ``BOOTLOADER_SYSTEMD_BOOT`` or ``BOOTLOADER_GRUB2``
    :raises: ``BootloaderError`` if no boot loader is detected.
    """
    if is_sdboot(snapshot, firmware_arch, prefix=prefix):
        kind = BOOTLOADER_SYSTEMD_BOOT
    elif is_grub2(snapshot, prefix=prefix):
        kind = BOOTLOADER_GRUB2
    else:
        raise BootloaderError.not_detected()
    _log_debug_detect("snapshot %s carries %s", snapshot, kind)
    return kind


def bootloader_name(snapshot, firmware_arch, prefix=None):
    """Return the display name of the boot loader in ``snapshot``."""
    return classify_bootloader(snapshot, firmware_arch, prefix=prefix)


def find_bootloader(snapshot, firmware_arch, prefix=None):
    """Return the path to the boot loader image staged in ``snapshot``.

    :raises: ``BootloaderError`` if no boot loader is detected.
    """
    kind = classify_bootloader(snapshot, firmware_arch, prefix=prefix)
    return locate_bootloader(kind, snapshot, firmware_arch, prefix=prefix)


def determine_boot_dst(snapshot, firmware_arch, prefix=None):
    """Return the boot destination directory on the ESP for the boot
    loader carried by ``snapshot``.

    :raises: ``BootloaderError`` if no boot loader is detected.
    """
    try:
        kind = classify_bootloader(snapshot, firmware_arch, prefix=prefix)
    except BootloaderError as err:
        raise BootloaderError.unsupported() from err
    return BOOT_DESTINATIONS[kind]


__all__ = [
    "BootloaderError",
    "BOOT_DESTINATIONS",
    "find_sdboot",
    "find_grub2",
    "locate_bootloader",
    "is_sdboot",
    "is_grub2",
    "classify_bootloader",
    "bootloader_name",
    "find_bootloader",
    "determine_boot_dst",
]

# vim: set et ts=4 sw=4 :
