# Copyright sdbootutil developers
#
# sdbootutil/config.py - sdbootutil persistent configuration
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.config`` module defines constants and functions for
reading and writing persistent (on-disk) configuration for the
sdbootutil library and tools.

Users of the module can load and write configuration data, and obtain
the values of configuration keys defined in the sdbootutil
configuration file.
"""
from os import chmod, fdatasync, fdopen, rename, unlink
from os.path import dirname, exists as path_exists
from configparser import ConfigParser, ParsingError
from tempfile import mkstemp
import logging

from sdbootutil import *


class SdbootConfigError(SdbootError):
    """Base class for sdbootutil configuration errors."""

    pass


# Module logging configuration
_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#
# Constants for configuration sections and options: to add a new option,
# create a new _CFG_* constant giving the name of the option and add a
# hook to _read_sdboot_config() to set the value when read.
#
_CFG_SECT_GLOBAL = "global"
_CFG_SECT_INSTALL = "install"
_CFG_BOOT_ROOT = "boot_root"
_CFG_SHIMDIR = "shimdir"
_CFG_FIRMWARE_ARCH = "firmware_arch"
_CFG_ENTRY_TOKEN = "entry_token"
_CFG_NO_VARIABLES = "no_variables"
_CFG_NO_RANDOM_SEED = "no_random_seed"

_TRUES = ["True", "true", "Yes", "yes", "1"]


def _read_sdboot_config(path=None):
    """Read sdbootutil persistent configuration values from the defined
    path and return them as a ``SdbootConfig`` object.

    A missing configuration file yields the default configuration.

    :param path: the configuration file to read, or None to read the
                 currently configured config file path.

    :rtype: SdbootConfig
    """
    path = path or get_sdboot_config_path()
    sc = SdbootConfig()

    if not path_exists(path):
        _log_debug("no sdbootutil configuration at '%s': using defaults", path)
        return sc

    _log_debug("reading sdbootutil configuration from '%s'", path)
    cfg = ConfigParser()
    try:
        cfg.read(path)
    except ParsingError as e:
        _log_error("Failed to parse configuration file '%s': %s", path, e)
        raise SdbootConfigError("Failed to parse %s: %s" % (path, e)) from e

    if not cfg.has_section(_CFG_SECT_GLOBAL):
        raise SdbootConfigError("Missing 'global' section in %s" % path)

    if cfg.has_option(_CFG_SECT_GLOBAL, _CFG_BOOT_ROOT):
        _log_debug("Found global.boot_root")
        sc.boot_root = cfg.get(_CFG_SECT_GLOBAL, _CFG_BOOT_ROOT)
    if cfg.has_option(_CFG_SECT_GLOBAL, _CFG_SHIMDIR):
        _log_debug("Found global.shimdir")
        sc.shimdir = cfg.get(_CFG_SECT_GLOBAL, _CFG_SHIMDIR)
    if cfg.has_option(_CFG_SECT_GLOBAL, _CFG_FIRMWARE_ARCH):
        _log_debug("Found global.firmware_arch")
        sc.firmware_arch = cfg.get(_CFG_SECT_GLOBAL, _CFG_FIRMWARE_ARCH)
    if cfg.has_option(_CFG_SECT_GLOBAL, _CFG_ENTRY_TOKEN):
        _log_debug("Found global.entry_token")
        sc.entry_token = cfg.get(_CFG_SECT_GLOBAL, _CFG_ENTRY_TOKEN) or None

    if cfg.has_section(_CFG_SECT_INSTALL):
        if cfg.has_option(_CFG_SECT_INSTALL, _CFG_NO_VARIABLES):
            _log_debug("Found install.no_variables")
            value = cfg.get(_CFG_SECT_INSTALL, _CFG_NO_VARIABLES)
            sc.no_variables = value.strip() in _TRUES
        if cfg.has_option(_CFG_SECT_INSTALL, _CFG_NO_RANDOM_SEED):
            _log_debug("Found install.no_random_seed")
            value = cfg.get(_CFG_SECT_INSTALL, _CFG_NO_RANDOM_SEED)
            sc.no_random_seed = value.strip() in _TRUES

    _log_debug("read configuration: %s", repr(sc))
    sc._cfg = cfg
    return sc


def load_sdboot_config(path=None):
    """Load sdbootutil persistent configuration values from the defined
    path and make the them the active configuration.

    :param path: the configuration file to read, or None to read the
                 currently configured config file path

    :rtype: SdbootConfig
    """
    sc = _read_sdboot_config(path=path)
    set_sdboot_config(sc)
    return sc


def config_file_sets(config, option, section=_CFG_SECT_GLOBAL):
    """Return ``True`` if the configuration file that ``config`` was
    read from sets ``option`` in ``section``.
    """
    cfg = getattr(config, "_cfg", None)
    return cfg is not None and cfg.has_option(section, option)


def _sync_config(sc, cfg):
    """Sync the configuration values of ``SdbootConfig`` object ``sc`` to
    the ``ConfigParser`` ``cfg``.
    """

    def yes_no(value):
        if value:
            return "yes"
        return "no"

    def attr_has_value(obj, attr):
        return hasattr(obj, attr) and getattr(obj, attr) is not None

    for section in (_CFG_SECT_GLOBAL, _CFG_SECT_INSTALL):
        if not cfg.has_section(section):
            cfg.add_section(section)

    if attr_has_value(sc, "boot_root"):
        cfg.set(_CFG_SECT_GLOBAL, _CFG_BOOT_ROOT, sc.boot_root)
    if attr_has_value(sc, "shimdir"):
        cfg.set(_CFG_SECT_GLOBAL, _CFG_SHIMDIR, sc.shimdir)
    if attr_has_value(sc, "firmware_arch"):
        cfg.set(_CFG_SECT_GLOBAL, _CFG_FIRMWARE_ARCH, sc.firmware_arch)
    if attr_has_value(sc, "entry_token"):
        cfg.set(_CFG_SECT_GLOBAL, _CFG_ENTRY_TOKEN, sc.entry_token)
    if attr_has_value(sc, "no_variables"):
        cfg.set(_CFG_SECT_INSTALL, _CFG_NO_VARIABLES, yes_no(sc.no_variables))
    if attr_has_value(sc, "no_random_seed"):
        cfg.set(_CFG_SECT_INSTALL, _CFG_NO_RANDOM_SEED, yes_no(sc.no_random_seed))


def write_sdboot_config(config=None, path=None):
    """Write sdbootutil configuration to disk.

    :param config: the configuration values to write, or None to
                   write the current configuration
    :param path: the configuration file to write, or None to write
                 the currently configured config file path

    :rtype: None
    """
    path = path or get_sdboot_config_path()
    config = config or get_sdboot_config()

    cfg = getattr(config, "_cfg", None) or ConfigParser()
    _sync_config(config, cfg)
    config._cfg = cfg

    (tmp_fd, tmp_path) = mkstemp(prefix="sdbootutil", dir=dirname(path))
    try:
        with fdopen(tmp_fd, "w") as f_tmp:
            cfg.write(f_tmp)
            f_tmp.flush()
            fdatasync(f_tmp.fileno())
        rename(tmp_path, path)
        chmod(path, SDBOOT_CONFIG_MODE)
    except OSError as e:
        _log_error("Error writing configuration file %s: %s", path, e)
        try:
            unlink(tmp_path)
        except OSError:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise e


__all__ = [
    "SdbootConfigError",
    # Configuration file handling
    "load_sdboot_config",
    "write_sdboot_config",
    "config_file_sets",
]

# vim: set et ts=4 sw=4 :
