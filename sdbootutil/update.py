# Copyright sdbootutil developers
#
# sdbootutil/update.py - Boot loader update decisions
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.update`` module decides whether the boot loader on
the ESP is older than the one staged in a snapshot, and replaces it.

The ``UpdateDecisionEngine`` is constructed once with the command
executor, logger and configuration it uses; every later call uses
those objects rather than looking them up again.

An update only happens when both the installed and the candidate
versions can be read and the installed version orders lower. If
either version is missing or unreadable there is nothing to update
against, and ``needs_update()`` returns ``False``.
"""
import logging

from sdbootutil import *
from sdbootutil.bootloader import BootloaderError, determine_boot_dst, find_bootloader
from sdbootutil.install import place_bootloader_files
from sdbootutil.rollback import RollbackLedger
from sdbootutil.system import CommandExecutor, get_root_snapshot
from sdbootutil.version import VersionError, bootloader_version, is_lower

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_INSTALL)

_log_debug = _log.debug
_log_debug_install = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class UpdateDecisionEngine(object):
    """Compare and update the boot loader installed on the ESP.

    Arguments left as ``None`` in method calls are taken from the
    ``SdbootConfig`` given at construction.
    """

    def __init__(self, executor=None, logger=None, config=None):
        """Initialise a new ``UpdateDecisionEngine``.

        :param executor: the ``CommandExecutor`` used to run external
                         commands.
        :param logger: the ``logging.Logger`` used for messages.
        :param config: the ``SdbootConfig`` supplying defaults.
        """
        self.executor = executor or CommandExecutor()
        self.log = logger or _log
        self.config = config or get_sdboot_config()

    def __repr__(self):
        return "UpdateDecisionEngine(config=%s)" % repr(self.config)

    def _resolve(self, firmware_arch, shimdir, boot_root, prefix):
        return (
            firmware_arch or self.config.firmware_arch,
            shimdir or self.config.shimdir,
            boot_root or self.config.boot_root,
            prefix or self.config.prefix,
        )

    def root_snapshot(self, prefix=None):
        """Return the ``SnapshotRef`` of the live root file system."""
        return get_root_snapshot(
            executor=self.executor, prefix=prefix or self.config.prefix
        )

    def boot_dst(self, snapshot, firmware_arch=None, prefix=None):
        """Return the boot destination for the boot loader in
        ``snapshot``.
        """
        return determine_boot_dst(
            snapshot,
            firmware_arch or self.config.firmware_arch,
            prefix=prefix or self.config.prefix,
        )

    def installed_version(
        self,
        root_snapshot,
        firmware_arch=None,
        shimdir=None,
        boot_root=None,
        boot_dst=None,
        prefix=None,
    ):
        """Return the version of the boot loader installed in the boot
        destination, or ``None`` if it cannot be read.
        """
        (firmware_arch, shimdir, boot_root, prefix) = self._resolve(
            firmware_arch, shimdir, boot_root, prefix
        )
        try:
            boot_dst = boot_dst or self.boot_dst(root_snapshot, firmware_arch, prefix)
            return bootloader_version(
                root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix=prefix
            )
        except (VersionError, BootloaderError) as err:
            self.log.debug("No installed boot loader version: %s", err)
            return None

    def candidate_version(self, snapshot, firmware_arch=None, prefix=None):
        """Return the version of the boot loader staged in ``snapshot``,
        or ``None`` if it cannot be read.
        """
        firmware_arch = firmware_arch or self.config.firmware_arch
        prefix = prefix or self.config.prefix
        try:
            image = find_bootloader(snapshot, firmware_arch, prefix=prefix)
            return bootloader_version(
                snapshot, firmware_arch, "", "", "", filename=image, prefix=prefix
            )
        except (VersionError, BootloaderError) as err:
            self.log.debug("No candidate boot loader version: %s", err)
            return None

    def needs_update(
        self,
        root_snapshot,
        snapshot,
        firmware_arch=None,
        shimdir=None,
        boot_root=None,
        boot_dst=None,
        prefix=None,
    ):
        """Return ``True`` if the installed boot loader is older than the
        one staged in ``snapshot``.

        :param root_snapshot: the snapshot the installed boot loader
                              belongs to.
        :param snapshot: the snapshot holding the candidate boot loader.
        :rtype: bool
        """
        if not boot_dst:
            try:
                boot_dst = self.boot_dst(snapshot, firmware_arch, prefix)
            except BootloaderError as err:
                self.log.debug("No boot destination for %s: %s", snapshot, err)
                return False
        installed = self.installed_version(
            root_snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix
        )
        if installed is None:
            return False
        candidate = self.candidate_version(snapshot, firmware_arch, prefix)
        if candidate is None:
            return False
        update = is_lower(installed, candidate)
        self.log.info(
            "Installed boot loader %s, snapshot %s: %s",
            installed,
            candidate,
            "update available" if update else "up to date",
        )
        return update

    def _replace(self, snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix):
        """Replace the boot loader files in the boot destination with
        those from ``snapshot``, rolling back on any failure.
        """
        boot_dst = boot_dst or self.boot_dst(snapshot, firmware_arch, prefix)
        ledger = RollbackLedger()
        try:
            place_bootloader_files(
                snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix, ledger
            )
        except (SdbootError, OSError) as err:
            self.log.error("Update failed, rolling back: %s", err)
            ledger.undo_all()
            raise
        ledger.commit_all()
        self.log.info("Updated boot loader in %s", join_path(boot_root, boot_dst))

    def update(
        self,
        root_snapshot,
        snapshot,
        firmware_arch=None,
        shimdir=None,
        boot_root=None,
        boot_dst=None,
        prefix=None,
    ):
        """Update the boot loader if the installed one is older than the
        one staged in ``snapshot``.

        :returns: ``True`` if the boot loader was replaced.
        """
        (firmware_arch, shimdir, boot_root, prefix) = self._resolve(
            firmware_arch, shimdir, boot_root, prefix
        )
        if not self.needs_update(
            root_snapshot, snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix
        ):
            self.log.info("Boot loader does not need an update")
            return False
        self._replace(snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix)
        return True

    def force_update(
        self,
        snapshot,
        firmware_arch=None,
        shimdir=None,
        boot_root=None,
        boot_dst=None,
        prefix=None,
    ):
        """Replace the boot loader with the one staged in ``snapshot``
        whatever the installed version.

        :returns: ``True``
        """
        (firmware_arch, shimdir, boot_root, prefix) = self._resolve(
            firmware_arch, shimdir, boot_root, prefix
        )
        self._replace(snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix)
        return True


__all__ = [
    "UpdateDecisionEngine",
]

# vim: set et ts=4 sw=4 :
