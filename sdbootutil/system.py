# Copyright sdbootutil developers
#
# sdbootutil/system.py - System information and external commands
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.system`` module contains the functions used to query
the running system: external commands (``bootctl``, ``findmnt`` and
``efibootmgr``), the mount table, os-release, the machine
id and entry token, and block device information from sysfs.

Every function that reads the file system accepts a ``prefix``
argument giving a substitute root directory. Functions that would run
an external command return fixed values when a prefix is set, so that
the install and update paths can be exercised without touching the
firmware or the real ESP.
"""
from subprocess import run, CalledProcessError
from os import environ
from os.path import basename, dirname, exists as path_exists, realpath
import logging
import re

from sdbootutil import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_SYSTEM)

_log_debug = _log.debug
_log_debug_system = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

_CMD_ENV = {
    "LC_ALL": "C",
}

#: Values returned by ``get_bootctl_info()`` under a path override.
_OVERRIDE_FIRMWARE_ARCH = "x64"
_OVERRIDE_ENTRY_TOKEN = "entry_token"

#: Values returned by ``get_findmnt_output()`` under a path override.
_OVERRIDE_MOUNT_UUID = "123456789"
_OVERRIDE_MOUNT_DEVICE = "sda1"

#: Entry token kinds accepted by ``settle_system_tokens()``.
ENTRY_TOKEN_MACHINE_ID = "machine-id"
ENTRY_TOKEN_OS_ID = "os-id"
ENTRY_TOKEN_OS_IMAGE = "os-image"
ENTRY_TOKEN_KINDS = [ENTRY_TOKEN_MACHINE_ID, ENTRY_TOKEN_OS_ID, ENTRY_TOKEN_OS_IMAGE]

_OS_RELEASE_PATHS = ["usr/lib/os-release", "etc/os-release"]
_ENTRY_TOKEN_PATH = "etc/kernel/entry-token"
_MACHINE_ID_PATH = "etc/machine-id"
_OVERLAY_MACHINE_ID_FMT = "var/lib/overlay/%d/etc/machine-id"

_SNAPSHOT_FSROOT_RE = re.compile(r"^(?P<prefix>.*)/(?P<id>\d+)/" + SNAPSHOT_SUBDIR + "$")


class SystemInfoError(SdbootError):
    """Exception raised when system information cannot be obtained."""

    @staticmethod
    def command_failed(command, err):
        return SystemInfoError(f"{command} call failed: {err}")

    @staticmethod
    def key_not_found(key):
        return SystemInfoError(f"{key} not found")

    @staticmethod
    def file_not_found(what, path):
        return SystemInfoError(f"Could not find {what} at {path}")

    @staticmethod
    def read_failed(path, err):
        return SystemInfoError(f"Failed to read {path}: {err}")

    @staticmethod
    def invalid_partition(path, value):
        return SystemInfoError(f"Invalid partition number in {path}: '{value}'")

    @staticmethod
    def not_a_snapshot(fsroot):
        return SystemInfoError(f"Root file system is not a snapshot: {fsroot}")

    @staticmethod
    def invalid_entry_token(kind):
        return SystemInfoError(
            f"Invalid entry token kind: {kind} (expected one of: "
            + ", ".join(ENTRY_TOKEN_KINDS)
            + ")"
        )


class CommandExecutor(object):
    """Run external commands and return their output.

    Objects of this class are passed to the functions of this module
    and to the update engine; tests substitute an object with the same
    ``get_command_output()`` method.
    """

    def get_command_output(self, command, args=None):
        """Run ``command`` with ``args`` and return its standard output,
        decoded and stripped of surrounding white space.

        :param command: the program to run.
        :param args: a list of arguments.
        :rtype: str
        :raises: ``SystemInfoError`` if the command is not found or
                 exits with a non-zero status.
        """
        cmd_args = [command] + list(args or [])
        _log_debug_system("running '%s'", " ".join(cmd_args))
        env = dict(environ)
        env.update(_CMD_ENV)
        try:
            cmd = run(cmd_args, env=env, capture_output=True, check=True)
        except FileNotFoundError as err:
            raise SystemInfoError.command_failed(command, err) from err
        except CalledProcessError as err:
            stderr = err.stderr.decode("utf8", errors="replace").strip()
            _log_debug(
                "Error calling %s command: '%s': %s",
                command,
                " ".join(cmd_args),
                stderr,
            )
            raise SystemInfoError.command_failed(command, stderr or err) from err
        try:
            return cmd.stdout.decode("utf8").strip()
        except UnicodeDecodeError as err:
            raise SystemInfoError.command_failed(command, err) from err


def _executor(executor):
    return executor if executor is not None else CommandExecutor()


def get_bootctl_info(executor=None, prefix=None):
    """Return the firmware architecture, entry token and boot root
    reported by ``bootctl``.

    :returns: a ``(firmware_arch, entry_token, boot_root)`` tuple.
    :raises: ``SystemInfoError`` if bootctl fails or a value is missing.
    """
    if prefix:
        return (_OVERRIDE_FIRMWARE_ARCH, _OVERRIDE_ENTRY_TOKEN, prefix)

    output = _executor(executor).get_command_output("bootctl", ["--no-pager"])

    firmware_arch = None
    entry_token = None
    boot_root = None
    for line in output.splitlines():
        if firmware_arch is None and "Firmware Arch: " in line:
            firmware_arch = line.split("Firmware Arch: ", 1)[1].strip()
        elif entry_token is None and "token: " in line:
            entry_token = line.split("token: ", 1)[1].strip()
        elif boot_root is None and "$BOOT: " in line:
            boot_root = line.split("$BOOT: ", 1)[1].split(" ", 1)[0]

    if not firmware_arch:
        raise SystemInfoError.key_not_found("Firmware Arch")
    if not entry_token:
        raise SystemInfoError.key_not_found("Entry token")
    if not boot_root:
        raise SystemInfoError.key_not_found("Boot root")

    _log_debug_system(
        "bootctl: arch=%s token=%s boot_root=%s", firmware_arch, entry_token, boot_root
    )
    return (firmware_arch, entry_token, boot_root)


def get_findmnt_output(mount_point, executor=None, prefix=None):
    """Return the file system UUID and source device mounted at
    ``mount_point``.

    :returns: a ``(uuid, device)`` tuple.
    """
    if prefix:
        return (_OVERRIDE_MOUNT_UUID, _OVERRIDE_MOUNT_DEVICE)

    output = _executor(executor).get_command_output(
        "findmnt", [mount_point, "-v", "-r", "-n", "-o", "UUID,SOURCE"]
    )
    fields = output.split()
    if not fields:
        raise SystemInfoError.key_not_found("UUID")
    if len(fields) < 2:
        raise SystemInfoError.key_not_found("Device")
    return (fields[0], fields[1])


def create_efi_boot_entry(drive, partno, loader, executor=None, prefix=None):
    """Create a firmware boot entry for ``loader`` on partition
    ``partno`` of ``drive``, unless one already exists.

    :param drive: the disk device path, e.g. ``/dev/sda``.
    :param partno: the ESP partition number.
    :param loader: the loader path relative to the ESP root.
    :returns: ``True`` if an entry was created.
    """
    if prefix:
        return False

    executor = _executor(executor)
    if BOOT_MANAGER_LABEL in executor.get_command_output("efibootmgr"):
        _log_info("EFI entry for %s already exists, skipping", BOOT_MANAGER_LABEL)
        return False

    loader = "\\" + loader.strip("/").replace("/", "\\")
    executor.get_command_output(
        "efibootmgr",
        [
            "-q",
            "--create",
            f"--disk={drive}",
            f"--part={partno}",
            f"--label={BOOT_MANAGER_LABEL}",
            f"--loader={loader}",
        ],
    )
    _log_info("Created EFI boot entry '%s'", BOOT_MANAGER_LABEL)
    return True


def set_systemd_log_level(verbosity, prefix=None):
    """Export ``SYSTEMD_LOG_LEVEL`` to child processes according to
    ``verbosity``, unless it is already set.
    """
    if prefix or "SYSTEMD_LOG_LEVEL" in environ or verbosity < 1:
        return
    environ["SYSTEMD_LOG_LEVEL"] = "debug" if verbosity > 1 else "info"


#
# Mount table and snapshot layout
#


def read_mounts(prefix=None):
    """Return the mount table as a list of
    ``(device, mount_point, fstype)`` tuples.
    """
    mounts_path = join_path(prefix or "/", "proc/mounts")
    try:
        with open(mounts_path, "r") as mounts_file:
            lines = mounts_file.readlines()
    except OSError as err:
        raise SystemInfoError.read_failed(mounts_path, err) from err

    mounts = []
    for line in lines:
        fields = line.split()
        if len(fields) < 3:
            continue
        mounts.append((fields[0], fields[1], fields[2]))
    return mounts


def _mount_fstype(mount_point, prefix=None):
    fstype = None
    for (_device, where, what) in read_mounts(prefix=prefix):
        if where == mount_point:
            fstype = what
    return fstype


def is_transactional(prefix=None):
    """Return ``True`` if ``/etc`` is an overlay mount, as it is on
    transactional systems.
    """
    return _mount_fstype("/etc", prefix=prefix) in ("overlay", "overlayfs")


def is_snapshotted(prefix=None):
    """Return ``True`` if the root file system is btrfs with a
    ``.snapshots`` directory.
    """
    if _mount_fstype("/", prefix=prefix) != "btrfs":
        return False
    return path_exists(join_path(prefix or "/", SNAPSHOTS_DIR))


def get_root_snapshot_info(executor=None, prefix=None):
    """Return the snapshot directory, snapshot number and subvolume
    path of the live root file system.

    :returns: a ``(snapshots_prefix, snapshot_id, subvol)`` tuple.
    :raises: ``SystemInfoError`` if the root is not a snapshot.
    """
    if prefix:
        return (SNAPSHOTS_DIR, 0, prefix)
    fsroot = _executor(executor).get_command_output(
        "findmnt", ["-n", "-o", "FSROOT", "/"]
    )
    match = _SNAPSHOT_FSROOT_RE.match(fsroot)
    if not match:
        raise SystemInfoError.not_a_snapshot(fsroot)
    return (match.group("prefix"), int(match.group("id")), fsroot)


def get_root_snapshot(executor=None, prefix=None):
    """Return a ``SnapshotRef`` for the live root file system."""
    (_snapshots, snapshot_id, _subvol) = get_root_snapshot_info(
        executor=executor, prefix=prefix
    )
    return SnapshotRef(snapshot_id)


#
# Operating system identity
#


def read_os_release(subvol=None, prefix=None):
    """Read the os-release file of ``subvol`` (or of the root).

    :returns: an ``(ID, VERSION_ID, PRETTY_NAME, IMAGE_ID)`` tuple;
              keys absent from the file are ``None``.
    :raises: ``SystemInfoError`` if no os-release file exists.
    """
    candidates = [join_path(prefix or "/", subvol, p) for p in _OS_RELEASE_PATHS]
    os_release = None
    for candidate in candidates:
        if path_exists(candidate):
            os_release = candidate
            break
    if not os_release:
        raise SystemInfoError.file_not_found("os-release", candidates[-1])

    release = {}
    try:
        with open(os_release, "r") as release_file:
            for line in release_file:
                if blank_or_comment(line):
                    continue
                (name, value) = parse_name_value(line)
                release[name] = value
    except OSError as err:
        raise SystemInfoError.read_failed(os_release, err) from err
    except ValueError as err:
        raise SystemInfoError.read_failed(os_release, err) from err

    _log_debug_system("read os-release from '%s'", os_release)
    return (
        release.get("ID"),
        release.get("VERSION_ID"),
        release.get("PRETTY_NAME"),
        release.get("IMAGE_ID"),
    )


def _read_stripped(path):
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except OSError as err:
        raise SystemInfoError.read_failed(path, err) from err


def read_machine_id(subvol=None, snapshot=None, prefix=None):
    """Return the machine id of ``subvol`` (or of the root).

    On transactional systems the machine id of a snapshot that has not
    yet been booted lives in the ``/etc`` overlay for that snapshot.

    :raises: ``SystemInfoError`` if no machine id is found.
    """
    machine_id_path = join_path(prefix or "/", subvol, _MACHINE_ID_PATH)
    if path_exists(machine_id_path):
        return _read_stripped(machine_id_path)

    if snapshot is not None and is_transactional(prefix=prefix):
        snapshot_id = getattr(snapshot, "snapshot_id", snapshot)
        overlay_path = join_path(
            prefix or "/", _OVERLAY_MACHINE_ID_FMT % int(snapshot_id)
        )
        if path_exists(overlay_path):
            return _read_stripped(overlay_path)

    raise SystemInfoError.file_not_found("machine-id", machine_id_path)


def settle_system_tokens(subvol=None, snapshot=None, entry_token=None, prefix=None):
    """Determine the entry token and machine id for ``subvol``.

    :param entry_token: one of ``ENTRY_TOKEN_KINDS``, or ``None`` to use
                        ``/etc/kernel/entry-token`` if it exists, and the
                        machine id otherwise.
    :returns: an ``(entry_token, machine_id)`` tuple.
    """
    machine_id = read_machine_id(subvol=subvol, snapshot=snapshot, prefix=prefix)

    if entry_token is None:
        token_path = join_path(prefix or "/", subvol, _ENTRY_TOKEN_PATH)
        token = _read_stripped(token_path) if path_exists(token_path) else ""
        token = token or machine_id
    elif entry_token == ENTRY_TOKEN_MACHINE_ID:
        token = machine_id
    elif entry_token == ENTRY_TOKEN_OS_ID:
        token = read_os_release(subvol=subvol, prefix=prefix)[0]
        if not token:
            raise SystemInfoError.key_not_found("ID in os-release")
    elif entry_token == ENTRY_TOKEN_OS_IMAGE:
        token = read_os_release(subvol=subvol, prefix=prefix)[3]
        if not token:
            raise SystemInfoError.key_not_found("IMAGE_ID in os-release")
    else:
        raise SystemInfoError.invalid_entry_token(entry_token)

    _log_debug_system("entry token: %s machine id: %s", token, machine_id)
    return (token, machine_id)


#
# Block devices
#


def read_partition_number(path):
    """Read a partition number from a sysfs ``partition`` file."""
    value = _read_stripped(path)
    try:
        return int(value)
    except ValueError as err:
        raise SystemInfoError.invalid_partition(path, value) from err


def get_drive_and_partition_from_block_device(device, prefix=None):
    """Return the disk device and partition number for partition
    ``device`` (for e.g. ``"sda1"``).

    :returns: a ``(drive, partition_number)`` tuple.
    """
    block_path = join_path(prefix or "/", "sys/class/block", basename(device))
    partno = read_partition_number(join_path(block_path, "partition"))
    drive = basename(dirname(realpath(block_path)))
    return (join_path("/dev", drive), partno)


__all__ = [
    "SystemInfoError",
    "CommandExecutor",
    "ENTRY_TOKEN_MACHINE_ID",
    "ENTRY_TOKEN_OS_ID",
    "ENTRY_TOKEN_OS_IMAGE",
    "ENTRY_TOKEN_KINDS",
    "get_bootctl_info",
    "get_findmnt_output",
    "create_efi_boot_entry",
    "set_systemd_log_level",
    "read_mounts",
    "is_transactional",
    "is_snapshotted",
    "get_root_snapshot_info",
    "get_root_snapshot",
    "read_os_release",
    "read_machine_id",
    "settle_system_tokens",
    "read_partition_number",
    "get_drive_and_partition_from_block_device",
]

# vim: set et ts=4 sw=4 :
