# Copyright sdbootutil developers
#
# sdbootutil/command.py - sdbootutil command interface
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.command`` module provides both the sdbootutil command
line interface infrastructure, and a simple procedural interface to the
``sdbootutil`` library modules.

The procedural interface is used by the ``sdbootutil`` command line
tool, and may be used by application programs, or interactively in the
Python shell by users who do not require all the features present in
the sdbootutil object API.
"""
from argparse import ArgumentParser
import logging
import sys

from sdbootutil import *
from sdbootutil.bootloader import bootloader_name, determine_boot_dst
from sdbootutil.config import config_file_sets, load_sdboot_config
from sdbootutil.install import install_bootloader, is_installed
from sdbootutil.system import (
    ENTRY_TOKEN_KINDS,
    CommandExecutor,
    get_bootctl_info,
    get_root_snapshot,
    is_snapshotted,
    set_systemd_log_level,
    settle_system_tokens,
)
from sdbootutil.update import UpdateDecisionEngine

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_COMMAND)

_log_debug = _log.debug
_log_debug_cmd = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

_default_log_level = logging.WARNING
_console_handler = None

#
# Command driven API: each function takes resolved values and returns a
# boolean result, raising ``SdbootError`` or ``OSError`` on failure.
#


def bootloader_command(snapshot, firmware_arch, prefix=None, out_file=None):
    """Print the name of the boot loader staged in ``snapshot``.

    :param snapshot: a ``SnapshotRef``, snapshot number, or ``None``.
    :param firmware_arch: the EFI firmware architecture name.
    :param prefix: an optional substitute file system root.
    :param out_file: the file to write to (default ``sys.stdout``).
    :returns: ``True``
    :raises: ``BootloaderError`` if no boot loader is detected.
    """
    out_file = out_file or sys.stdout
    print(bootloader_name(snapshot, firmware_arch, prefix=prefix), file=out_file)
    return True


def is_installed_command(
    snapshot, firmware_arch, shimdir, boot_root, boot_dst, image=None, prefix=None
):
    """Return ``True`` if the current boot loader was installed by
    sdbootutil.
    """
    result = is_installed(
        snapshot,
        firmware_arch,
        shimdir,
        boot_root,
        boot_dst,
        filename=image,
        prefix=prefix,
    )
    if result:
        _log_info("Boot loader was installed using this tool")
    else:
        _log_info("Boot loader was not installed using this tool")
    return result


def install_command(
    snapshot,
    firmware_arch,
    shimdir,
    boot_root,
    boot_dst,
    entry_token,
    no_variables=False,
    no_random_seed=False,
    prefix=None,
    executor=None,
):
    """Install the boot loader staged in ``snapshot`` on the ESP.

    :returns: ``True`` on success.
    """
    return install_bootloader(
        snapshot,
        firmware_arch,
        shimdir,
        boot_root,
        boot_dst,
        entry_token,
        no_variables=no_variables,
        no_random_seed=no_random_seed,
        prefix=prefix,
        executor=executor,
    )


def needs_update_command(
    root_snapshot,
    snapshot,
    firmware_arch,
    shimdir,
    boot_root,
    boot_dst,
    prefix=None,
    engine=None,
):
    """Return ``True`` if the installed boot loader is older than the one
    staged in ``snapshot``.
    """
    engine = engine or UpdateDecisionEngine()
    result = engine.needs_update(
        root_snapshot,
        snapshot,
        firmware_arch=firmware_arch,
        shimdir=shimdir,
        boot_root=boot_root,
        boot_dst=boot_dst,
        prefix=prefix,
    )
    _log_info("Boot loader %s an update", "needs" if result else "does not need")
    return result


def _check_installed(root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix):
    if not is_installed(
        root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix=prefix
    ):
        raise SdbootError("Boot loader was not installed by sdbootutil")


def update_command(
    root_snapshot,
    snapshot,
    firmware_arch,
    shimdir,
    boot_root,
    boot_dst,
    prefix=None,
    engine=None,
):
    """Update the boot loader if the one staged in ``snapshot`` is newer
    than the installed one.

    Only a boot loader installed by sdbootutil is updated.

    :returns: ``True`` if the boot loader was replaced, ``False`` if no
              update was needed.
    """
    engine = engine or UpdateDecisionEngine()
    _check_installed(root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix)
    return engine.update(
        root_snapshot,
        snapshot,
        firmware_arch=firmware_arch,
        shimdir=shimdir,
        boot_root=boot_root,
        boot_dst=boot_dst,
        prefix=prefix,
    )


def force_update_command(
    root_snapshot,
    snapshot,
    firmware_arch,
    shimdir,
    boot_root,
    boot_dst,
    prefix=None,
    engine=None,
):
    """Replace the installed boot loader with the one staged in
    ``snapshot`` regardless of version.

    Only a boot loader installed by sdbootutil is replaced.

    :returns: ``True``
    """
    engine = engine or UpdateDecisionEngine()
    _check_installed(root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix)
    return engine.force_update(
        snapshot,
        firmware_arch=firmware_arch,
        shimdir=shimdir,
        boot_root=boot_root,
        boot_dst=boot_dst,
        prefix=prefix,
    )


#
# sdbootutil command line tool
#

_debug_masks = {
    "detect": SDBOOT_DEBUG_DETECT,
    "version": SDBOOT_DEBUG_VERSION,
    "rollback": SDBOOT_DEBUG_ROLLBACK,
    "install": SDBOOT_DEBUG_INSTALL,
    "system": SDBOOT_DEBUG_SYSTEM,
    "command": SDBOOT_DEBUG_COMMAND,
    "all": SDBOOT_DEBUG_ALL,
}


def _parse_debug_mask(debug_arg):
    """Return the debug mask for a comma separated list of area names."""
    mask = 0
    for name in debug_arg.split(","):
        name = name.strip()
        if not name:
            continue
        if name not in _debug_masks:
            raise ValueError(
                "Unknown debug mask: %s (valid: %s)"
                % (name, ", ".join(_debug_masks.keys()))
            )
        mask |= _debug_masks[name]
    return mask


def _verbosity_level(verbosity):
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return _default_log_level


def _setup_logging(cmd_args):
    """Attach a console handler to the ``sdbootutil`` logger and set
    its level from the ``-v`` count and ``--debug`` list.
    """
    global _console_handler
    sdboot_log = logging.getLogger("sdbootutil")

    _console_handler = logging.StreamHandler()
    _console_handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))
    sdboot_log.addHandler(_console_handler)
    sdboot_log.setLevel(_verbosity_level(cmd_args.verbose))

    if cmd_args.debug:
        set_debug_mask(_parse_debug_mask(cmd_args.debug))
        sdboot_log.setLevel(logging.DEBUG)


def _shutdown_logging(old_level, old_mask):
    global _console_handler
    sdboot_log = logging.getLogger("sdbootutil")
    if _console_handler:
        sdboot_log.removeHandler(_console_handler)
        _console_handler = None
    sdboot_log.setLevel(old_level)
    set_debug_mask(old_mask)


def _bootctl_defaults(config, cmd_args, executor=None):
    """Fill in the firmware architecture and boot root from ``bootctl``
    when neither the command line nor the configuration file sets them.
    """
    wanted = []
    if not cmd_args.arch and not config_file_sets(config, "firmware_arch"):
        wanted.append("firmware_arch")
    if not cmd_args.esp_path and not config_file_sets(config, "boot_root"):
        wanted.append("boot_root")
    if not wanted:
        return

    try:
        (firmware_arch, _token, boot_root) = get_bootctl_info(executor=executor)
    except SdbootError as err:
        _log_warn("Could not query bootctl, using defaults: %s", err)
        return

    if "firmware_arch" in wanted:
        config.firmware_arch = firmware_arch
    if "boot_root" in wanted:
        config.boot_root = boot_root


def _load_config(cmd_args, executor=None):
    """Load the persistent configuration and apply command line
    overrides to it.

    On the running system, values that are set neither on the command
    line nor in the configuration file are read from ``bootctl``.
    """
    if cmd_args.config:
        set_sdboot_config_path(cmd_args.config)
    config = load_sdboot_config()

    config.prefix = cmd_args.root or config.prefix
    if not config.prefix:
        _bootctl_defaults(config, cmd_args, executor=executor)

    config.boot_root = cmd_args.esp_path or config.boot_root
    config.firmware_arch = cmd_args.arch or config.firmware_arch
    config.entry_token = cmd_args.entry_token or config.entry_token
    config.no_variables = cmd_args.no_variables or config.no_variables
    config.no_random_seed = cmd_args.no_random_seed or config.no_random_seed
    config.verbosity = cmd_args.verbose
    set_sdboot_config(config)
    _log_debug_cmd("effective configuration: %s", repr(config))
    return config


def _resolve_entry_token(entry_token, snapshot, prefix):
    """Return the literal entry token for ``entry_token``, which may be
    an entry token kind, a literal token, or ``None``.
    """
    if entry_token and entry_token not in ENTRY_TOKEN_KINDS:
        return entry_token
    (token, _machine_id) = settle_system_tokens(
        subvol=snapshot.path if snapshot is not None else None,
        snapshot=snapshot,
        entry_token=entry_token,
        prefix=prefix,
    )
    return token


class _CommandContext(object):
    """The values shared by every sub-command of one invocation."""

    def __init__(self, cmd_args, config, executor):
        self.config = config
        self.prefix = config.prefix
        self.executor = executor
        if not is_snapshotted(prefix=self.prefix):
            raise SdbootError("Root file system is not snapshotted")
        self.engine = UpdateDecisionEngine(executor=executor, logger=_log, config=config)
        self.root_snapshot = get_root_snapshot(executor=executor, prefix=self.prefix)
        if cmd_args.snapshot is not None:
            self.snapshot = SnapshotRef(cmd_args.snapshot)
        else:
            self.snapshot = self.root_snapshot
        self.image = cmd_args.image
        self._boot_dst = None

    @property
    def boot_dst(self):
        if not self._boot_dst:
            self._boot_dst = determine_boot_dst(
                self.snapshot, self.config.firmware_arch, prefix=self.prefix
            )
        return self._boot_dst

    def targets(self):
        """Return the arguments common to the update commands."""
        return (
            self.root_snapshot,
            self.snapshot,
            self.config.firmware_arch,
            self.config.shimdir,
            self.config.boot_root,
            self.boot_dst,
        )


def _bootloader_cmd(ctx):
    bootloader_command(ctx.snapshot, ctx.config.firmware_arch, prefix=ctx.prefix)
    return 0


def _is_installed_cmd(ctx):
    result = is_installed_command(
        ctx.snapshot,
        ctx.config.firmware_arch,
        ctx.config.shimdir,
        ctx.config.boot_root,
        ctx.boot_dst,
        image=ctx.image,
        prefix=ctx.prefix,
    )
    return 0 if result else 1


def _install_cmd(ctx):
    entry_token = _resolve_entry_token(
        ctx.config.entry_token, ctx.snapshot, ctx.prefix
    )
    install_command(
        ctx.snapshot,
        ctx.config.firmware_arch,
        ctx.config.shimdir,
        ctx.config.boot_root,
        ctx.boot_dst,
        entry_token,
        no_variables=ctx.config.no_variables,
        no_random_seed=ctx.config.no_random_seed,
        prefix=ctx.prefix,
        executor=ctx.executor,
    )
    return 0


def _needs_update_cmd(ctx):
    result = needs_update_command(*ctx.targets(), prefix=ctx.prefix, engine=ctx.engine)
    return 0 if result else 1


def _update_cmd(ctx):
    update_command(*ctx.targets(), prefix=ctx.prefix, engine=ctx.engine)
    return 0


def _force_update_cmd(ctx):
    force_update_command(*ctx.targets(), prefix=ctx.prefix, engine=ctx.engine)
    return 0


_commands = {
    "bootloader": _bootloader_cmd,
    "is-installed": _is_installed_cmd,
    "install": _install_cmd,
    "needs-update": _needs_update_cmd,
    "update": _update_cmd,
    "force-update": _force_update_cmd,
}


def _make_parser():
    parser = ArgumentParser(
        prog="sdbootutil", description="Boot loader management for snapshots"
    )
    parser.add_argument(
        "command",
        metavar="COMMAND",
        type=str,
        choices=list(_commands.keys()),
        help="The sdbootutil command to run: %s" % ", ".join(_commands.keys()),
    )
    parser.add_argument(
        "-s",
        "--snapshot",
        metavar="SNAPSHOT",
        type=int,
        help="The snapshot number to operate on (default: the root snapshot)",
    )
    parser.add_argument(
        "-p",
        "--esp-path",
        metavar="PATH",
        type=str,
        help="The EFI system partition mount point",
    )
    parser.add_argument(
        "-a",
        "--arch",
        metavar="ARCH",
        type=str,
        help="The EFI firmware architecture (for e.g. x64, aa64)",
    )
    parser.add_argument(
        "-t",
        "--entry-token",
        metavar="TOKEN",
        type=str,
        help="The boot entry token: %s or a literal token"
        % ", ".join(ENTRY_TOKEN_KINDS),
    )
    parser.add_argument(
        "-i",
        "--image",
        metavar="IMAGE",
        type=str,
        help="Read the boot loader version from IMAGE",
    )
    parser.add_argument(
        "-n",
        "--no-variables",
        action="store_true",
        help="Do not create a firmware boot entry",
    )
    parser.add_argument(
        "--no-random-seed",
        action="store_true",
        help="Do not write a systemd-boot random seed",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose output (repeat for debugging output)",
    )
    parser.add_argument(
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="Enable debugging for areas: %s" % ", ".join(_debug_masks.keys()),
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=str,
        help="Path to the sdbootutil configuration file",
    )
    parser.add_argument(
        "--root",
        metavar="PATH",
        type=str,
        help="Operate on the file system tree at PATH instead of the "
        "running system",
    )
    return parser


def main(args):
    """Run the sdbootutil command line tool.

    :param args: the argument vector, including the program name.
    :returns: the process exit status.
    :rtype: int
    """
    parser = _make_parser()
    cmd_args = parser.parse_args(args[1:])

    old_level = logging.getLogger("sdbootutil").level
    old_mask = get_debug_mask()
    try:
        _setup_logging(cmd_args)
        executor = CommandExecutor()
        config = _load_config(cmd_args, executor=executor)
        set_systemd_log_level(cmd_args.verbose, prefix=config.prefix)
        ctx = _CommandContext(cmd_args, config, executor)
        status = _commands[cmd_args.command](ctx)
    except (SdbootError, OSError, ValueError) as e:
        _log_error("%s", e)
        status = 1
    finally:
        _shutdown_logging(old_level, old_mask)
    return status


__all__ = [
    # Command driven API
    "bootloader_command",
    "is_installed_command",
    "install_command",
    "needs_update_command",
    "update_command",
    "force_update_command",
    # Command line tool
    "main",
]

# vim: set et ts=4 sw=4 :
