# Copyright sdbootutil developers
#
# tests/__init__.py - sdbootutil test package initialisation
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
from os.path import join, abspath, dirname
from os import makedirs
import logging
import shutil
import errno

from sdbootutil import (
    DEFAULT_SDBOOT_CONFIG_PATH,
    HOST_ARCH,
    SdbootConfig,
    join_path,
    set_debug_mask,
    set_sdboot_config,
    set_sdboot_config_path,
    snapshot_path,
)

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
console_handler.setLevel(logging.WARNING)
log.addHandler(file_handler)
log.addHandler(console_handler)

# Root of the testing directory
TESTS_PATH = dirname(abspath(__file__))

# Location of the temporary sandbox for test data
SANDBOX_PATH = join(TESTS_PATH, "sandbox")

# The shim directory used by test fixtures
TEST_SHIMDIR = "/usr/share/efi/%s" % HOST_ARCH

# The ESP mount point used by test fixtures
TEST_BOOT_ROOT = "/boot/efi"

# Synthetic boot loader image contents
SDBOOT_VERSION = "255.4+suse.17.gbe772961ad"
GRUB2_VERSION = "2.12"
_IMAGE_HEAD = b"MZ\x90\x00\x03\x00\x00\x00PE\x00\x00d\x86"
_IMAGE_TAIL = b"\x00\x00.sbat\x00\xff\xfe"

# Test sandbox functions


def rm_sandbox():
    """Remove the test sandbox at SANDBOX_PATH."""
    try:
        shutil.rmtree(SANDBOX_PATH)
    except OSError as e:
        if e.errno != errno.ENOENT:
            raise


def mk_sandbox():
    """Create a new test sandbox at SANDBOX_PATH."""
    makedirs(SANDBOX_PATH)


def reset_sandbox():
    """Reset the test sandbox at SANDBOX_PATH by removing it and
    re-creating the directory.
    """
    rm_sandbox()
    mk_sandbox()


def reset_sdboot_config():
    """Reset the active sdbootutil configuration, configuration path
    and debug mask to their defaults.
    """
    set_sdboot_config(SdbootConfig())
    set_sdboot_config_path(DEFAULT_SDBOOT_CONFIG_PATH)
    set_debug_mask(0)


# Fixture builders


def sdboot_image(version=SDBOOT_VERSION):
    """Return the content of a synthetic systemd-boot image."""
    return (
        _IMAGE_HEAD
        + b"#### LoaderInfo: systemd-boot "
        + version.encode("utf8")
        + b" ####"
        + _IMAGE_TAIL
    )


def grub2_image(version=GRUB2_VERSION):
    """Return the content of a synthetic GRUB2 image."""
    return (
        _IMAGE_HEAD
        + b"GNU GRUB  version %s\x00"
        + version.encode("utf8")
        + b"\x00"
        + _IMAGE_TAIL
    )


def write_file(path, data=b""):
    """Write ``data`` to ``path`` creating any missing directories."""
    if isinstance(data, str):
        data = data.encode("utf8")
    makedirs(dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return path


def read_file(path):
    with open(path, "rb") as f:
        return f.read()


def sdboot_path(snapshot=None, firmware_arch="x64", fallback=False, prefix=SANDBOX_PATH):
    """Return the sandbox path of a systemd-boot image in ``snapshot``."""
    if fallback:
        image = "usr/lib/systemd/boot/efi/systemd-boot%s.efi" % firmware_arch
    else:
        image = "usr/lib/systemd-boot/systemd-boot%s.efi" % firmware_arch
    return snapshot_path(snapshot, image, prefix=prefix)


def grub2_path(snapshot=None, fallback=False, prefix=SANDBOX_PATH):
    """Return the sandbox path of a GRUB2 image in ``snapshot``."""
    if fallback:
        image = "usr/share/grub2/%s-efi/grub.efi" % HOST_ARCH
    else:
        image = "usr/share/efi/%s/grub.efi" % HOST_ARCH
    return snapshot_path(snapshot, image, prefix=prefix)


def make_sdboot(snapshot=None, version=SDBOOT_VERSION, firmware_arch="x64", fallback=False):
    """Stage a systemd-boot image in ``snapshot`` in the sandbox."""
    return write_file(
        sdboot_path(snapshot, firmware_arch, fallback=fallback), sdboot_image(version)
    )


def make_grub2(snapshot=None, version=GRUB2_VERSION, fallback=False, with_bli=True):
    """Stage a GRUB2 image, and optionally the bli module, in
    ``snapshot`` in the sandbox.
    """
    path = write_file(grub2_path(snapshot, fallback=fallback), grub2_image(version))
    if with_bli:
        write_file(
            snapshot_path(
                snapshot,
                "usr/share/grub2/%s-efi/bli.mod" % HOST_ARCH,
                prefix=SANDBOX_PATH,
            ),
            b"\x7fELF bli",
        )
    return path


def make_shim(snapshot=None, shimdir=TEST_SHIMDIR):
    """Stage shim.efi and MokManager.efi in ``snapshot`` in the sandbox."""
    shim_dir = snapshot_path(snapshot, shimdir, prefix=SANDBOX_PATH)
    write_file(join(shim_dir, "MokManager.efi"), b"MZ mokmanager")
    return write_file(join(shim_dir, "shim.efi"), b"MZ shim")


def boot_dst_path(boot_dst, *parts, boot_root=TEST_BOOT_ROOT):
    """Return the sandbox path of ``parts`` in a boot destination."""
    return join_path(SANDBOX_PATH, boot_root, boot_dst, *parts)


def make_mounts(lines):
    """Write ``lines`` as the sandbox ``proc/mounts`` table."""
    return write_file(join(SANDBOX_PATH, "proc/mounts"), "\n".join(lines) + "\n")


# Mock objects


class FakeExecutor(object):
    """Stand-in for ``sdbootutil.system.CommandExecutor`` that returns
    canned output and records every call.

    ``outputs`` maps a command name to its output string, or to an
    exception instance to raise.
    """

    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.calls = []

    def get_command_output(self, command, args=None):
        self.calls.append((command, list(args or [])))
        output = self.outputs.get(command, "")
        if isinstance(output, Exception):
            raise output
        return output


class MockArgs(object):
    """Mock arguments class for testing the sdbootutil command line
    infrastructure.
    """

    arch = None
    command = ""
    config = None
    debug = None
    entry_token = None
    esp_path = None
    image = None
    no_random_seed = False
    no_variables = False
    root = None
    snapshot = None
    verbose = 0


__all__ = [
    "TESTS_PATH",
    "SANDBOX_PATH",
    "TEST_SHIMDIR",
    "TEST_BOOT_ROOT",
    "SDBOOT_VERSION",
    "GRUB2_VERSION",
    "rm_sandbox",
    "mk_sandbox",
    "reset_sandbox",
    "reset_sdboot_config",
    "sdboot_image",
    "grub2_image",
    "write_file",
    "read_file",
    "sdboot_path",
    "grub2_path",
    "make_sdboot",
    "make_grub2",
    "make_shim",
    "boot_dst_path",
    "make_mounts",
    "FakeExecutor",
    "MockArgs",
]

# vim: set et ts=4 sw=4 :
