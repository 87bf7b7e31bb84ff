# Copyright sdbootutil developers
#
# sdbootutil/_sdbootutil.py - sdbootutil package initialisation
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides the declarations, classes, and functions exposed
in the main ``sdbootutil`` module. Users of sdbootutil should not import
this module directly: it will be imported automatically with the top
level module.
"""
from os.path import join as path_join
import platform
import logging
import string

#: The location of the EFI system partition mount point.
DEFAULT_BOOT_ROOT = "/boot/efi"

#: The firmware architecture assumed when bootctl is not consulted.
DEFAULT_FIRMWARE_ARCH = "x64"

#: The architecture of the running host, as reported by ``uname -m``.
HOST_ARCH = platform.machine()

#: The directory holding numbered snapshots below the root subvolume.
SNAPSHOTS_DIR = "/.snapshots"

#: The name of the snapshot tree inside a numbered snapshot directory.
SNAPSHOT_SUBDIR = "snapshot"

#: Boot destination used for systemd-boot installs.
SYSTEMD_BOOT_DST = "/EFI/systemd"

#: Boot destination used for GRUB2 installs.
GRUB2_BOOT_DST = "/EFI/opensuse"

#: Removable media fallback directory on the ESP.
EFI_BOOT_DIR = "EFI/BOOT"

#: Name of the marker file written to the boot destination on install.
INSTALLED_MARKER = "installed_by_sdbootutil"

#: Label used for the firmware boot entry.
BOOT_MANAGER_LABEL = "openSUSE Boot Manager"

#: Bootloader kind: systemd-boot
BOOTLOADER_SYSTEMD_BOOT = "systemd-boot"
#: Bootloader kind: GRUB2 with BLS support
BOOTLOADER_GRUB2 = "grub2"

#: List of all recognised bootloader kinds.
BOOTLOADER_KINDS = [BOOTLOADER_SYSTEMD_BOOT, BOOTLOADER_GRUB2]

#: Configuration file mode
SDBOOT_CONFIG_MODE = 0o644

#: The default configuration file location
SDBOOT_CONFIG_FILE = "sdbootutil.conf"
DEFAULT_SDBOOT_CONFIG_PATH = path_join("/etc", SDBOOT_CONFIG_FILE)
__sdboot_config_path = DEFAULT_SDBOOT_CONFIG_PATH

#
# Logging
#

SDBOOT_LOG_DEBUG = logging.DEBUG
SDBOOT_LOG_INFO = logging.INFO
SDBOOT_LOG_WARN = logging.WARNING
SDBOOT_LOG_ERROR = logging.ERROR

_log_levels = (SDBOOT_LOG_DEBUG, SDBOOT_LOG_INFO, SDBOOT_LOG_WARN, SDBOOT_LOG_ERROR)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# sdbootutil debugging levels
SDBOOT_DEBUG_DETECT = 1
SDBOOT_DEBUG_VERSION = 2
SDBOOT_DEBUG_ROLLBACK = 4
SDBOOT_DEBUG_INSTALL = 8
SDBOOT_DEBUG_SYSTEM = 16
SDBOOT_DEBUG_COMMAND = 32
SDBOOT_DEBUG_ALL = (
    SDBOOT_DEBUG_DETECT
    | SDBOOT_DEBUG_VERSION
    | SDBOOT_DEBUG_ROLLBACK
    | SDBOOT_DEBUG_INSTALL
    | SDBOOT_DEBUG_SYSTEM
    | SDBOOT_DEBUG_COMMAND
)

__debug_mask = 0


class SdbootError(Exception):
    """Base class of all sdbootutil exceptions."""

    pass


class SdbootLogger(logging.Logger):
    """SdbootLogger()

    sdbootutil logging wrapper class: wrap the Logger.debug() method
    to allow filtering of submodule debug messages by log mask.

    Handlers, filters and formatters belong to the application using
    the library: this class only decides whether a masked debug
    message is passed on to them.
    """

    mask_bits = 0

    def set_debug_mask(self, mask_bits):
        """Set the debug mask for this ``SdbootLogger``.

        This should normally be set to the ``SDBOOT_DEBUG_*`` value
        corresponding to the ``sdbootutil`` sub-module that this
        instance of ``SdbootLogger`` belongs to.

        :param mask_bits: The bits to set in this logger's mask.
        :rtype: None
        """
        if mask_bits < 0 or mask_bits > SDBOOT_DEBUG_ALL:
            raise ValueError(
                "Invalid SdbootLogger mask bits: 0x%x"
                % (mask_bits & ~SDBOOT_DEBUG_ALL)
            )

        self.mask_bits = mask_bits

    def debug_masked(self, msg, *args, **kwargs):
        """Log a debug message if it passes the current debug mask.

        :param msg: the message to be logged
        :rtype: None
        """
        if self.mask_bits & get_debug_mask():
            self.debug(msg, *args, **kwargs)


logging.setLoggerClass(SdbootLogger)


def get_debug_mask():
    """Return the current debug mask for the ``sdbootutil`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    return __debug_mask


def set_debug_mask(mask):
    """Set the debug mask for the ``sdbootutil`` package.

    :param mask: the logical OR of the ``SDBOOT_DEBUG_*``
                 values to log.
    :rtype: None
    """
    global __debug_mask
    if mask < 0 or mask > SDBOOT_DEBUG_ALL:
        raise ValueError("Invalid sdbootutil debug mask: %d" % mask)
    __debug_mask = mask


def get_shimdir():
    """Return the directory that holds the signed shim loader for the
    running host architecture.

    :rtype: str
    """
    return f"/usr/share/efi/{HOST_ARCH}"


class SdbootConfig(object):
    """Class representing sdbootutil persistent configuration values."""

    # Initialise members from global defaults

    boot_root = DEFAULT_BOOT_ROOT
    shimdir = get_shimdir()
    firmware_arch = DEFAULT_FIRMWARE_ARCH
    entry_token = None

    no_variables = False
    no_random_seed = False

    verbosity = 0

    #: Substitute filesystem root used by every path lookup.
    prefix = None

    def __str__(self):
        """Return a string representation of this ``SdbootConfig`` in
        sdbootutil.conf (INI) notation.
        """
        cstr = ""
        cstr += "[global]\n"
        cstr += "boot_root = %s\n" % self.boot_root
        cstr += "shimdir = %s\n" % self.shimdir
        cstr += "firmware_arch = %s\n" % self.firmware_arch
        if self.entry_token:
            cstr += "entry_token = %s\n" % self.entry_token
        cstr += "\n"

        cstr += "[install]\n"
        cstr += "no_variables = %s\n" % self.no_variables
        cstr += "no_random_seed = %s\n" % self.no_random_seed

        return cstr

    def __repr__(self):
        """Return a string representation of this ``SdbootConfig`` in
        SdbootConfig initialiser notation.
        """
        cstr = 'SdbootConfig(boot_root="%s", shimdir="%s", ' % (
            self.boot_root,
            self.shimdir,
        )
        cstr += 'firmware_arch="%s", entry_token=%s, ' % (
            self.firmware_arch,
            repr(self.entry_token),
        )
        cstr += "no_variables=%s, " % self.no_variables
        cstr += "no_random_seed=%s, " % self.no_random_seed
        cstr += "verbosity=%d, " % self.verbosity
        cstr += "prefix=%s)" % repr(self.prefix)

        return cstr

    def __init__(
        self,
        boot_root=None,
        shimdir=None,
        firmware_arch=None,
        entry_token=None,
        no_variables=None,
        no_random_seed=None,
        verbosity=None,
        prefix=None,
    ):
        """Initialise a new ``SdbootConfig`` object with the supplied
        configuration values, or defaults for any unset arguments.

        :param boot_root: the mount point of the EFI system partition
        :param shimdir: the directory holding shim.efi in a snapshot
        :param firmware_arch: the EFI firmware architecture name
        :param entry_token: the boot entry token to install under
        :param no_variables: do not touch UEFI variables
        :param no_random_seed: do not write a systemd-boot random seed
        :param verbosity: the command line verbosity level
        :param prefix: an alternate root directory for all lookups
        """
        self.boot_root = boot_root or self.boot_root
        self.shimdir = shimdir or self.shimdir
        self.firmware_arch = firmware_arch or self.firmware_arch
        self.entry_token = entry_token or self.entry_token
        self.no_variables = no_variables or self.no_variables
        self.no_random_seed = no_random_seed or self.no_random_seed
        self.verbosity = verbosity or self.verbosity
        self.prefix = prefix or self.prefix


__config = SdbootConfig()


def set_sdboot_config(config):
    """Set the active configuration to the object ``config`` (which may
    be any class that includes the ``SdbootConfig`` attributes).

    :param config: a configuration object
    :returns: None
    :raises: TypeError if ``config`` does not appear to have the
             correct attributes.
    """
    global __config

    def has_value(obj, attr):
        return hasattr(obj, attr) and getattr(obj, attr) is not None

    if not (has_value(config, "boot_root") and has_value(config, "shimdir")):
        raise TypeError("config does not appear to be a SdbootConfig object.")

    __config = config


def get_sdboot_config():
    """Return the active ``SdbootConfig`` object.

    :rtype: SdbootConfig
    :returns: the active configuration object
    """
    return __config


def get_sdboot_config_path():
    """Return the currently configured sdbootutil configuration file path.

    :rtype: str
    """
    return __sdboot_config_path


def set_sdboot_config_path(path):
    """Set the sdbootutil configuration file path.

    :param path: the path to the configuration file
    :rtype: None
    """
    global __sdboot_config_path
    if not path:
        raise ValueError("Configuration path cannot be empty.")
    __sdboot_config_path = path
    _log_debug("set sdbootutil config path to '%s'", path)


#
# Path construction
#


def join_path(*parts):
    """Join path components, treating every component after the first
    as relative to the ones before it.

    Empty and ``None`` components are skipped, so that an unset
    override prefix or an empty boot destination do not alter the
    result.

    :rtype: str
    """
    parts = [p for p in parts if p]
    if not parts:
        return ""
    head = parts[0]
    tail = [p.lstrip("/") for p in parts[1:]]
    tail = [p for p in tail if p]
    return path_join(head, *tail) if tail else head


class SnapshotRef(object):
    """A reference to one numbered snapshot of the root file system.

    ``SnapshotRef`` objects are immutable: they are resolved once from
    the live root subvolume and then used to build every
    snapshot-relative path.
    """

    _snapshot_id = None
    _snapshot_root = None

    @property
    def snapshot_id(self):
        """The integer snapshot number."""
        return self._snapshot_id

    @property
    def snapshot_root(self):
        """The directory that holds the numbered snapshots."""
        return self._snapshot_root

    @property
    def path(self):
        """The root of the snapshot's file system tree."""
        return join_path(self._snapshot_root, str(self._snapshot_id), SNAPSHOT_SUBDIR)

    def __init__(self, snapshot_id, snapshot_root=SNAPSHOTS_DIR):
        snapshot_id = int(snapshot_id)
        if snapshot_id < 0:
            raise ValueError("Invalid snapshot number: %d" % snapshot_id)
        self._snapshot_id = snapshot_id
        self._snapshot_root = snapshot_root

    def __str__(self):
        return self.path

    def __repr__(self):
        return 'SnapshotRef(%d, snapshot_root="%s")' % (
            self._snapshot_id,
            self._snapshot_root,
        )

    def __eq__(self, other):
        if not isinstance(other, SnapshotRef):
            return NotImplemented
        return (self.snapshot_id, self.snapshot_root) == (
            other.snapshot_id,
            other.snapshot_root,
        )

    def __hash__(self):
        return hash((self._snapshot_id, self._snapshot_root))


def snapshot_path(snapshot, *parts, prefix=None):
    """Return the path to ``parts`` inside ``snapshot``.

    :param snapshot: a ``SnapshotRef``, an integer snapshot number, or
                     ``None`` to address the prefix root directly.
    :param prefix: an optional substitute file system root.
    :rtype: str
    """
    if snapshot is None:
        return join_path(prefix or "/", *parts)
    if not isinstance(snapshot, SnapshotRef):
        snapshot = SnapshotRef(snapshot)
    return join_path(prefix or "/", snapshot.path, *parts)


#
# Generic routines for parsing name-value pairs.
#


def blank_or_comment(line):
    """Test whether line is empty of contains a comment.

    :param line: the line of text to be checked.
    :returns: ``True`` if the line is blank or a comment,
              and ``False`` otherwise.
    :rtype: bool
    """
    return not line.strip() or line.lstrip().startswith("#")


def parse_name_value(nvp, separator="="):
    """Parse a name value pair string.

    Parse a ``NAME="value"`` style string, as found in os-release and
    similar shell fragments, into its component parts, stripping quotes
    from the value if necessary, and return the result as a
    ``(name, value)`` tuple.

    :param nvp: A name value pair optionally with an in-line
                comment.
    :param separator: The separator character used in this name
                      value pair.
    :returns: A ``(name, value)`` tuple.
    :rtype: (string, string) tuple.
    """
    try:
        name, value = nvp.rstrip("\n").split(separator, 1)
    except ValueError:
        raise ValueError("Malformed name/value pair: %s" % nvp)

    name = name.strip()
    value = value.strip()

    if value and value[0] in "\"'":
        quote = value[0]
        end = value.find(quote, 1)
        value = value[1:end] if end > 0 else value[1:]
    elif "#" in value:
        value = value.split("#", 1)[0].rstrip()

    valid_name_chars = string.ascii_letters + string.digits + "_"
    bad_chars = [c for c in name if c not in valid_name_chars]
    if not name or any(bad_chars):
        raise ValueError("Invalid characters in name: %s (%s)" % (name, bad_chars))

    return (name, value)


__all__ = [
    # Module constants
    "DEFAULT_BOOT_ROOT",
    "DEFAULT_FIRMWARE_ARCH",
    "HOST_ARCH",
    "SNAPSHOTS_DIR",
    "SNAPSHOT_SUBDIR",
    "SYSTEMD_BOOT_DST",
    "GRUB2_BOOT_DST",
    "EFI_BOOT_DIR",
    "INSTALLED_MARKER",
    "BOOT_MANAGER_LABEL",
    "BOOTLOADER_SYSTEMD_BOOT",
    "BOOTLOADER_GRUB2",
    "BOOTLOADER_KINDS",
    "SDBOOT_CONFIG_MODE",
    "DEFAULT_SDBOOT_CONFIG_PATH",
    # Log levels
    "SDBOOT_LOG_DEBUG",
    "SDBOOT_LOG_INFO",
    "SDBOOT_LOG_WARN",
    "SDBOOT_LOG_ERROR",
    # API Classes
    "SdbootConfig",
    "SnapshotRef",
    # Persistent configuration
    "set_sdboot_config",
    "get_sdboot_config",
    "set_sdboot_config_path",
    "get_sdboot_config_path",
    # sdbootutil exception base class
    "SdbootError",
    # sdbootutil logger class (used by test suite)
    "SdbootLogger",
    # Debug logging
    "get_debug_mask",
    "set_debug_mask",
    "SDBOOT_DEBUG_DETECT",
    "SDBOOT_DEBUG_VERSION",
    "SDBOOT_DEBUG_ROLLBACK",
    "SDBOOT_DEBUG_INSTALL",
    "SDBOOT_DEBUG_SYSTEM",
    "SDBOOT_DEBUG_COMMAND",
    "SDBOOT_DEBUG_ALL",
    # Path construction
    "get_shimdir",
    "join_path",
    "snapshot_path",
    # Utility routines
    "blank_or_comment",
    "parse_name_value",
]

# vim: set et ts=4 sw=4 :
