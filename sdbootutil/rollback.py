# Copyright sdbootutil developers
#
# sdbootutil/rollback.py - Rollback of boot loader file replacement
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.rollback`` module records files that are about to be
replaced on the ESP so that a failed install or update can be unwound.

Each ``RollbackItem`` names an original file; its backup is the sibling
file with the same stem and the ``.bak`` extension. Files that an
operation creates are recorded as created items, which have no backup
and are simply removed on undo. A ``RollbackLedger`` collects the items
of one operation and either undoes all of them (restoring each backup,
or removing files that had no backup) or commits them (discarding every
backup).

Ledger operations are best effort: the failure of one item is logged
and does not stop the remaining items from being processed.
"""
from os import rename, unlink
from os.path import exists as path_exists, splitext
import shutil
import logging

from sdbootutil import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_ROLLBACK)

_log_debug = _log.debug
_log_debug_rollback = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Extension used for backup copies of replaced files.
BACKUP_EXT = ".bak"


class RollbackError(SdbootError):
    """Exception raised when a rollback item cannot be undone."""

    @staticmethod
    def restore_failed(backup, original, err):
        return RollbackError(f"Failed to restore {original} from {backup}: {err}")

    @staticmethod
    def remove_failed(original, err):
        return RollbackError(f"Failed to remove {original}: {err}")

    @staticmethod
    def duplicate_backup(backup):
        return RollbackError(f"Backup path already recorded: {backup}")


def backup_path_for(original_path):
    """Return the backup sibling path for ``original_path``."""
    return splitext(original_path)[0] + BACKUP_EXT


class RollbackItem(object):
    """A file that may be restored from, or cleaned up after, a
    replacement.

    The item does not own the backup file: it only names it.
    """

    _original_path = None
    _created = False

    @property
    def original_path(self):
        """The path of the file being replaced."""
        return self._original_path

    @property
    def backup_path(self):
        """The path of the backup copy of ``original_path``."""
        return backup_path_for(self._original_path)

    @property
    def created(self):
        """``True`` if the file did not exist before the operation."""
        return self._created

    def __init__(self, original_path, created=False):
        if not original_path:
            raise ValueError("RollbackItem requires a path.")
        self._original_path = str(original_path)
        self._created = bool(created)

    def __str__(self):
        return self._original_path

    def __repr__(self):
        if self._created:
            return 'RollbackItem("%s", created=True)' % self._original_path
        return 'RollbackItem("%s")' % self._original_path

    def undo(self):
        """Undo the replacement of this item's file.

        If the backup exists it is renamed over the original. Otherwise,
        if the original exists, it is removed as a file created by the
        failed operation. If neither exists there is nothing to do.

        A created item never consults its backup path: the file is
        removed if it exists.

        :raises: ``RollbackError`` if the restore or removal fails.
        """
        backup = self.backup_path
        original = self._original_path
        if not self._created and path_exists(backup):
            try:
                rename(backup, original)
            except OSError as err:
                raise RollbackError.restore_failed(backup, original, err) from err
            _log_info("Restored %s from %s", original, backup)
        elif path_exists(original):
            try:
                unlink(original)
            except OSError as err:
                raise RollbackError.remove_failed(original, err) from err
            _log_info("Removed %s", original)
        else:
            _log_info("No file or backup found for %s: nothing to restore", original)

    def commit(self):
        """Discard the backup of this item, keeping the original file.

        :returns: ``True`` on success or if there was no backup, and
                  ``False`` if the backup could not be removed.
        """
        backup = self.backup_path
        if self._created or not path_exists(backup):
            return True
        try:
            unlink(backup)
        except OSError as err:
            _log_error("Failed to remove backup %s: %s", backup, err)
            return False
        _log_debug_rollback("Removed backup %s", backup)
        return True


def undo_all(items):
    """Undo every item in ``items``, logging and skipping failures.

    :returns: the number of items that could not be undone.
    :rtype: int
    """
    failed = 0
    for item in items:
        try:
            item.undo()
        except RollbackError as err:
            _log_error("%s", err)
            failed += 1
    return failed


def commit_all(items):
    """Discard the backups of every item in ``items`` and clear the
    list.

    :returns: the number of backups that could not be removed.
    :rtype: int
    """
    failed = len([item for item in items if not item.commit()])
    del items[:]
    return failed


class RollbackLedger(object):
    """The rollback items of one install or update operation.

    Every item recorded in a ledger must be committed or undone before
    the operation that created the ledger returns.
    """

    def __init__(self):
        self.items = []

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __repr__(self):
        return "RollbackLedger([%s])" % ", ".join(repr(i) for i in self.items)

    def _backup_paths(self):
        return [i.backup_path for i in self.items if not i.created]

    def record(self, original_path):
        """Record that ``original_path`` is about to be replaced.

        The caller is responsible for having created the backup file
        (if the original existed) before calling ``record()``.

        :returns: the new ``RollbackItem``.
        """
        item = RollbackItem(original_path)
        if item.backup_path in self._backup_paths():
            raise RollbackError.duplicate_backup(item.backup_path)
        self.items.append(item)
        _log_debug_rollback("recorded rollback item for %s", item.original_path)
        return item

    def record_created(self, original_path):
        """Record that ``original_path`` is about to be created.

        The file must not exist yet. On undo it is removed; it never has
        a backup, so it may share a stem with a backed up file.

        :returns: the new ``RollbackItem``.
        """
        if path_exists(original_path):
            raise ValueError(f"Created file already exists: {original_path}")
        item = RollbackItem(original_path, created=True)
        self.items.append(item)
        _log_debug_rollback("recorded created file %s", item.original_path)
        return item

    def backup(self, original_path):
        """Copy ``original_path`` to its backup sibling, if it exists,
        and record it.

        A backup left behind by an earlier operation is removed when
        the original does not exist, so that undo cannot restore it.

        :returns: the new ``RollbackItem``.
        """
        backup = backup_path_for(str(original_path))
        if backup in self._backup_paths():
            raise RollbackError.duplicate_backup(backup)
        if path_exists(original_path):
            shutil.copy2(original_path, backup)
            _log_debug_rollback("backed up %s as %s", original_path, backup)
        elif path_exists(backup):
            try:
                unlink(backup)
            except OSError as err:
                raise RollbackError.remove_failed(backup, err) from err
            _log_warn("Removed stale backup %s", backup)
        return self.record(original_path)

    def undo(self, item):
        """Undo a single item of this ledger."""
        item.undo()

    def undo_all(self):
        """Undo every item of this ledger and clear it."""
        failed = undo_all(self.items)
        del self.items[:]
        return failed

    def commit_all(self):
        """Discard every backup of this ledger and clear it."""
        return commit_all(self.items)


__all__ = [
    "RollbackError",
    "BACKUP_EXT",
    "backup_path_for",
    "RollbackItem",
    "RollbackLedger",
    "undo_all",
    "commit_all",
]

# vim: set et ts=4 sw=4 :
