# Copyright sdbootutil developers
#
# sdbootutil/version.py - Boot loader version extraction and ordering
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.version`` module provides functions to find the
version string embedded in a boot loader binary image and to order two
version strings.

Version strings are compared in three sections: the dot separated main
version, an optional pre-release part following the first ``-``, and
optional build metadata following the first ``+``. Both systemd-boot
("255.4+suse.17.gbe772961ad") and GRUB2 ("2.12") versions are handled by
the same ordering.
"""
from os.path import basename, exists as path_exists
import logging

from sdbootutil import *
from sdbootutil.bootloader import find_bootloader

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_VERSION)

_log_debug = _log.debug
_log_debug_version = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Name of the shim loader that signals a shim-chained install.
SHIM_EFI = "shim.efi"

#: Name of the second stage image loaded by shim.
SHIM_LOADER_EFI = "grub.efi"

#: Marker pairs delimiting the version string in boot loader images,
#: in the order they are tried.
VERSION_MARKERS = [
    # systemd-boot ".sdmagic" info line
    (b"LoaderInfo: systemd-boot ", b" ####"),
    # GRUB2 version format string followed by the version literal
    (b"GNU GRUB  version %s\x00", b"\x00"),
]


class VersionError(SdbootError):
    """Exception raised when a boot loader version cannot be determined."""

    @staticmethod
    def file_not_found(path):
        return VersionError(f"File does not exist: {path}")

    @staticmethod
    def not_found():
        return VersionError("Version not found")

    @staticmethod
    def read_failed(path, err):
        return VersionError(f"Failed to read file {path}: {err}")


def find_version(content, start_marker, end_marker):
    """Find a version string in binary ``content``.

    The version is the text found between the first occurrence of
    ``start_marker`` and the first occurrence of ``end_marker`` that
    follows it.

    This function never raises for malformed input: missing markers and
    bytes that are not valid UTF-8 all yield ``None``.

    :param content: the bytes to search.
    :param start_marker: the bytes immediately preceding the version.
    :param end_marker: the bytes immediately following the version.
    :returns: The version string, or ``None`` if none was found.
    :rtype: str
    """
    start = content.find(start_marker)
    if start < 0:
        return None
    start += len(start_marker)
    end = content.find(end_marker, start)
    if end < 0:
        return None
    try:
        return content[start:end].decode("utf8")
    except UnicodeDecodeError:
        return None


def version_from_content(content):
    """Return the first version found in ``content`` using the known
    boot loader markers, or ``None``.
    """
    for (start_marker, end_marker) in VERSION_MARKERS:
        version = find_version(content, start_marker, end_marker)
        if version is not None:
            _log_debug_version("matched version marker %r", start_marker)
            return version
    return None


def bootloader_image_path(
    snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix=None
):
    """Return the path of the installed boot loader image in the boot
    destination.

    If shim is staged in ``shimdir`` the installed image is the GRUB
    named second stage loaded by shim, whatever boot loader it really
    contains. Otherwise the image shares its file name with the boot
    loader found in ``snapshot``.
    """
    if path_exists(join_path(prefix, shimdir, SHIM_EFI)):
        _log_debug_version("found %s in %s", SHIM_EFI, shimdir)
        return join_path(prefix, boot_root, boot_dst, SHIM_LOADER_EFI)
    bootloader = find_bootloader(snapshot, firmware_arch, prefix=prefix)
    return join_path(prefix, boot_root, boot_dst, basename(bootloader))


def bootloader_version(
    snapshot,
    firmware_arch,
    shimdir,
    boot_root,
    boot_dst,
    filename=None,
    prefix=None,
):
    """Return the version of a boot loader image.

    :param snapshot: the snapshot used to locate the boot loader, or
                     ``None`` to use the prefix root.
    :param firmware_arch: the EFI firmware architecture name.
    :param shimdir: the directory that may contain ``shim.efi``.
    :param boot_root: the ESP mount point.
    :param boot_dst: the boot destination below ``boot_root``.
    :param filename: an explicit image to read instead of the installed
                     boot loader.
    :param prefix: an optional substitute file system root.
    :returns: the version string.
    :rtype: str
    :raises: ``VersionError`` if the image does not exist, cannot be
             read or carries no recognisable version.
    """
    if filename:
        path = filename
    else:
        path = bootloader_image_path(
            snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix=prefix
        )

    if not path_exists(path):
        raise VersionError.file_not_found(path)

    _log_debug_version("reading boot loader image '%s'", path)
    try:
        with open(path, "rb") as image:
            content = image.read()
    except OSError as err:
        raise VersionError.read_failed(path, err) from err

    version = version_from_content(content)
    if version is None:
        raise VersionError.not_found()
    _log_debug("found version '%s' in '%s'", version, path)
    return version


#
# Version ordering
#


def _number(token):
    """Return ``token`` as an integer, or ``None`` if it is not a
    plain decimal number.
    """
    if token.isascii() and token.isdigit():
        return int(token)
    return None


def _parse_tokens(part):
    """Split a pre-release or build metadata string into a list of
    ``(token, number)`` tuples, where ``number`` is ``None`` for
    tokens that are not numeric.
    """
    return [(token, _number(token)) for token in part.split(".")]


def parse_version(version):
    """Parse ``version`` into its ``(main, pre_release, build)`` parts.

    ``main`` is a list of integers: segments of the main version that
    are not numeric are dropped. ``pre_release`` and ``build`` are
    token lists as returned by ``_parse_tokens()``.
    """
    (main_pre, _sep, build) = version.partition("+")
    (main, _sep, pre_release) = main_pre.partition("-")
    main_segments = [_number(seg) for seg in main.split(".")]
    main_segments = [seg for seg in main_segments if seg is not None]
    return (main_segments, _parse_tokens(pre_release), _parse_tokens(build))


def _compare_tokens(tokens1, tokens2):
    """Compare two token lists, returning a negative number, zero or a
    positive number as ``tokens1`` orders before, equal to or after
    ``tokens2``.

    Numeric tokens compare by value and always order before literal
    tokens; literal tokens compare lexicographically. A list that is a
    prefix of the other orders first.
    """
    for ((str1, num1), (str2, num2)) in zip(tokens1, tokens2):
        if num1 is not None and num2 is not None:
            if num1 != num2:
                return -1 if num1 < num2 else 1
        elif num1 is None and num2 is None:
            if str1 != str2:
                return -1 if str1 < str2 else 1
        elif num1 is not None:
            return -1
        else:
            return 1
    return len(tokens1) - len(tokens2)


def compare_versions(version1, version2):
    """Compare two version strings.

    :returns: a negative number if ``version1`` is lower than
              ``version2``, zero if they are equal and a positive
              number if ``version1`` is higher.
    :rtype: int
    """
    (main1, pre1, build1) = parse_version(version1)
    (main2, pre2, build2) = parse_version(version2)

    for (seg1, seg2) in zip(main1, main2):
        if seg1 != seg2:
            return -1 if seg1 < seg2 else 1
    if len(main1) != len(main2):
        return len(main1) - len(main2)

    result = _compare_tokens(pre1, pre2)
    if result:
        return result

    return _compare_tokens(build1, build2)


def is_lower(version1, version2):
    """Return ``True`` if ``version1`` orders strictly before
    ``version2`` and ``False`` otherwise (including when the two
    versions are equal).
    """
    lower = compare_versions(version1, version2) < 0
    _log_debug_version("'%s' %s '%s'", version1, "<" if lower else ">=", version2)
    return lower


__all__ = [
    "VersionError",
    "VERSION_MARKERS",
    "SHIM_EFI",
    "SHIM_LOADER_EFI",
    "find_version",
    "version_from_content",
    "bootloader_image_path",
    "bootloader_version",
    "parse_version",
    "compare_versions",
    "is_lower",
]

# vim: set et ts=4 sw=4 :
