# Copyright sdbootutil developers
#
# sdbootutil/install.py - Boot loader installation
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdbootutil.install`` module places boot loader images and their
configuration on the ESP, and answers whether the installed boot loader
was put there by sdbootutil.

Every file written by an install goes through a ``RollbackLedger``: the
current file is backed up, the new image is written to a temporary file
in the destination directory and renamed into place. Configuration files
that are only created when missing are recorded as created files. Callers
commit the ledger when every file has been placed, or undo it on the
first failure.
"""
from os import fdatasync, fdopen, makedirs, rename, unlink, urandom
from os.path import basename, dirname, exists as path_exists
from tempfile import mkstemp
import shutil
import logging

from sdbootutil import *
from sdbootutil.bootloader import (
    BootloaderError,
    classify_bootloader,
    find_bootloader,
)
from sdbootutil.rollback import RollbackLedger
from sdbootutil.system import (
    create_efi_boot_entry,
    get_drive_and_partition_from_block_device,
    get_findmnt_output,
)
from sdbootutil.version import SHIM_EFI, SHIM_LOADER_EFI, VersionError, bootloader_version

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_INSTALL)

_log_debug = _log.debug
_log_debug_install = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: The MOK manager shipped with shim.
MOK_MANAGER_EFI = "MokManager.efi"

#: Directory holding GRUB2 modules in a snapshot.
GRUB2_MODULE_DIR = f"usr/share/grub2/{HOST_ARCH}-efi"

#: GRUB2 module providing the Boot Loader Interface.
GRUB2_BLI_MODULE = "bli.mod"

#: Default systemd-boot entry type declaration.
SDBOOT_ENTRIES_SREL = "type1"

#: Default systemd-boot loader.conf
SDBOOT_LOADER_CONF = "#timeout 3\n#console-mode keep\n"

#: Default GRUB2 configuration for BLS boot entries.
GRUB2_CFG = "timeout=8\nfunction load_video {\n  true\n}\ninsmod bli\nblscfg\n"

#: Size of the systemd-boot random seed in bytes.
RANDOM_SEED_SIZE = 32

_LOADER_DIR = "loader"
_ENTRIES_DIR = "loader/entries"
_RANDOM_SEED = "loader/random-seed"
_BOOT_CSV = "boot.csv"
_ENTRY_TOKEN_PATH = "etc/kernel/entry-token"


class InstallError(SdbootError):
    """Exception raised when boot loader files cannot be installed."""

    @staticmethod
    def missing_source(path):
        return InstallError(f"Source file does not exist: {path}")

    @staticmethod
    def copy_failed(src, dst, err):
        return InstallError(f"Failed to copy {src} to {dst}: {err}")

    @staticmethod
    def write_failed(path, err):
        return InstallError(f"Failed to write {path}: {err}")


def _install_file(src, dst, ledger=None):
    """Copy ``src`` to ``dst`` through a temporary file in the
    destination directory.

    If ``ledger`` is given the current ``dst`` is backed up and recorded
    before it is replaced.
    """
    if not path_exists(src):
        raise InstallError.missing_source(src)

    dst_dir = dirname(dst)
    try:
        makedirs(dst_dir, exist_ok=True)
    except OSError as err:
        raise InstallError.copy_failed(src, dst, err) from err

    if ledger is not None:
        ledger.backup(dst)

    (tmp_fd, tmp_path) = mkstemp(prefix=".sdbootutil", dir=dst_dir)
    try:
        with fdopen(tmp_fd, "wb") as f_tmp:
            with open(src, "rb") as f_src:
                shutil.copyfileobj(f_src, f_tmp)
            f_tmp.flush()
            fdatasync(f_tmp.fileno())
        rename(tmp_path, dst)
    except OSError as err:
        _log_error("Error copying %s to %s: %s", src, dst, err)
        try:
            unlink(tmp_path)
        except OSError:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise InstallError.copy_failed(src, dst, err) from err
    _log_debug_install("installed %s as %s", src, dst)
    return dst


def _write_file(path, data, ledger=None):
    """Write ``data`` to ``path``, creating parent directories.

    If ``ledger`` is given the current ``path`` is backed up and
    recorded before it is overwritten.
    """
    if isinstance(data, str):
        data = data.encode("utf8")
    try:
        makedirs(dirname(path), exist_ok=True)
    except OSError as err:
        raise InstallError.write_failed(path, err) from err

    if ledger is not None:
        ledger.backup(path)

    try:
        with open(path, "wb") as f:
            f.write(data)
            f.flush()
            fdatasync(f.fileno())
    except OSError as err:
        raise InstallError.write_failed(path, err) from err
    _log_debug_install("wrote %s", path)
    return path


def _write_if_missing(path, data, ledger=None):
    if path_exists(path):
        _log_debug_install("keeping existing %s", path)
        return None
    if ledger is not None:
        ledger.record_created(path)
    return _write_file(path, data)


def copy_shim_files(
    snapshot_prefix, shimdir, boot_root, boot_dst, bootloader_file, prefix=None, ledger=None
):
    """Install shim, the MOK manager and ``bootloader_file`` into the
    boot destination.

    The boot loader is installed under the name shim chains to
    (``grub.efi``), whichever boot loader it is.

    :param snapshot_prefix: the root of the snapshot holding shim.
    :param shimdir: the shim directory below ``snapshot_prefix``.
    :param boot_root: the ESP mount point.
    :param boot_dst: the boot destination below ``boot_root``.
    :param bootloader_file: the boot loader image to install.
    :param prefix: an optional substitute file system root.
    :param ledger: an optional ``RollbackLedger`` to record into.
    :returns: the list of installed paths.
    """
    src_dir = join_path(prefix, snapshot_prefix, shimdir)
    dst_dir = join_path(prefix, boot_root, boot_dst)
    installed = []
    for name in (MOK_MANAGER_EFI, SHIM_EFI):
        installed.append(
            _install_file(join_path(src_dir, name), join_path(dst_dir, name), ledger)
        )
    installed.append(
        _install_file(bootloader_file, join_path(dst_dir, SHIM_LOADER_EFI), ledger)
    )
    return installed


def copy_bootloader(bootloader_file, boot_root, boot_dst, firmware_arch, prefix=None, ledger=None):
    """Install ``bootloader_file`` into the boot destination and as the
    removable media fallback loader ``EFI/BOOT/BOOT<ARCH>.EFI``.

    :returns: the list of installed paths.
    """
    fallback = f"BOOT{firmware_arch.upper()}.EFI"
    return [
        _install_file(
            bootloader_file,
            join_path(prefix, boot_root, boot_dst, basename(bootloader_file)),
            ledger,
        ),
        _install_file(
            bootloader_file,
            join_path(prefix, boot_root, EFI_BOOT_DIR, fallback),
            ledger,
        ),
    ]


def update_sdboot_configuration(boot_root, prefix=None, ledger=None):
    """Create the systemd-boot ``entries.srel`` and ``loader.conf``
    files if they do not exist.
    """
    loader_dir = join_path(prefix, boot_root, _LOADER_DIR)
    _write_if_missing(
        join_path(loader_dir, "entries.srel"), SDBOOT_ENTRIES_SREL, ledger
    )
    _write_if_missing(join_path(loader_dir, "loader.conf"), SDBOOT_LOADER_CONF, ledger)


def update_grub2_configuration(
    snapshot_prefix, boot_root, boot_dst, prefix=None, ledger=None
):
    """Create the GRUB2 configuration in the boot destination if it does
    not exist, refresh the fallback ``EFI/BOOT/grub.cfg`` from it and
    install the ``bli`` module from ``snapshot_prefix``.
    """
    grub_cfg = join_path(prefix, boot_root, boot_dst, "grub.cfg")
    # Shares the grub.bak stem with grub.efi, so it can only be created.
    _write_if_missing(grub_cfg, GRUB2_CFG, ledger)

    fallback_cfg = join_path(prefix, boot_root, EFI_BOOT_DIR, "grub.cfg")
    _install_file(grub_cfg, fallback_cfg, ledger)

    bli_src = join_path(prefix, snapshot_prefix, GRUB2_MODULE_DIR, GRUB2_BLI_MODULE)
    bli_dst = join_path(
        prefix, boot_root, boot_dst, f"{HOST_ARCH}-efi", GRUB2_BLI_MODULE
    )
    _install_file(bli_src, bli_dst, ledger)


def update_random_seed(boot_root, skip=False, prefix=None, ledger=None):
    """Write a new systemd-boot random seed below ``boot_root``.

    :param skip: do nothing if ``True``.
    :returns: the path written, or ``None``.
    """
    if skip:
        return None
    seed_path = join_path(prefix, boot_root, _RANDOM_SEED)
    _write_file(seed_path, urandom(RANDOM_SEED_SIZE), ledger)
    return seed_path


def write_boot_csv(boot_root, boot_dst, loader_name, prefix=None, ledger=None):
    """Write the shim fallback ``boot.csv`` naming ``loader_name``."""
    csv_path = join_path(prefix, boot_root, boot_dst, _BOOT_CSV)
    return _write_file(csv_path, f"{loader_name},{BOOT_MANAGER_LABEL}\n", ledger)


def write_installed_marker(boot_root, boot_dst, prefix=None, ledger=None):
    """Create the empty marker file recording an sdbootutil install."""
    return _write_file(
        join_path(prefix, boot_root, boot_dst, INSTALLED_MARKER), b"", ledger
    )


def write_entry_token(entry_token, prefix=None, ledger=None):
    """Write ``/etc/kernel/entry-token`` if it does not exist."""
    return _write_if_missing(
        join_path(prefix or "/", _ENTRY_TOKEN_PATH), f"{entry_token}\n", ledger
    )


def is_installed(
    snapshot, firmware_arch, shimdir, boot_root, boot_dst, filename=None, prefix=None
):
    """Return ``True`` if the boot loader in the boot destination has a
    readable version and was installed by sdbootutil.

    An image without the marker file is a foreign install; a marker
    without a readable image is a broken one. Both return ``False``.
    """
    try:
        bootloader_version(
            snapshot,
            firmware_arch,
            shimdir,
            boot_root,
            boot_dst,
            filename=filename,
            prefix=prefix,
        )
    except (VersionError, BootloaderError) as err:
        _log_debug_install("no installed boot loader version: %s", err)
        return False
    marker = join_path(prefix, boot_root, boot_dst, INSTALLED_MARKER)
    if not path_exists(marker):
        _log_debug_install("marker file %s not found", marker)
        return False
    return True


def place_bootloader_files(
    snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix=None, ledger=None
):
    """Install the boot loader images of ``snapshot`` and refresh the
    loader configuration.

    :returns: the name of the loader the firmware should start.
    """
    bootloader = find_bootloader(snapshot, firmware_arch, prefix=prefix)
    kind = classify_bootloader(snapshot, firmware_arch, prefix=prefix)
    snapshot_prefix = snapshot_path(snapshot)

    if path_exists(join_path(prefix, snapshot_prefix, shimdir, SHIM_EFI)):
        _log_info("Installing %s with shim into %s", kind, boot_dst)
        copy_shim_files(
            snapshot_prefix, shimdir, boot_root, boot_dst, bootloader, prefix, ledger
        )
        loader_name = SHIM_EFI
    else:
        _log_info("Installing %s into %s", kind, boot_dst)
        copy_bootloader(bootloader, boot_root, boot_dst, firmware_arch, prefix, ledger)
        loader_name = basename(bootloader)

    if kind == BOOTLOADER_GRUB2:
        update_grub2_configuration(
            snapshot_prefix, boot_root, boot_dst, prefix=prefix, ledger=ledger
        )
    else:
        update_sdboot_configuration(boot_root, prefix=prefix, ledger=ledger)
    return loader_name


def install_bootloader(
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
    """Install the boot loader of ``snapshot`` on the ESP.

    If any step fails, every file written so far is rolled back before
    the error is raised. The marker file is written last, once the
    firmware boot entry exists.

    :param snapshot: a ``SnapshotRef``, snapshot number, or ``None``.
    :param firmware_arch: the EFI firmware architecture name.
    :param shimdir: the shim directory inside the snapshot.
    :param boot_root: the ESP mount point.
    :param boot_dst: the boot destination below ``boot_root``.
    :param entry_token: the boot entry token.
    :param no_variables: do not create a firmware boot entry.
    :param no_random_seed: do not write a random seed.
    :param prefix: an optional substitute file system root.
    :param executor: a ``CommandExecutor`` for external commands.
    :returns: ``True`` on success.
    """
    if not entry_token:
        raise ValueError("Install requires an entry token.")

    ledger = RollbackLedger()
    try:
        for directory in (_ENTRIES_DIR, entry_token):
            makedirs(join_path(prefix, boot_root, directory), exist_ok=True)

        loader_name = place_bootloader_files(
            snapshot, firmware_arch, shimdir, boot_root, boot_dst, prefix, ledger
        )

        write_boot_csv(boot_root, boot_dst, loader_name, prefix=prefix, ledger=ledger)
        write_entry_token(entry_token, prefix=prefix, ledger=ledger)
        update_random_seed(
            boot_root, skip=no_random_seed, prefix=prefix, ledger=ledger
        )

        if not no_variables:
            (_uuid, device) = get_findmnt_output(
                boot_root, executor=executor, prefix=prefix
            )
            (drive, partno) = get_drive_and_partition_from_block_device(
                device, prefix=prefix
            )
            create_efi_boot_entry(
                drive,
                partno,
                join_path(boot_dst, loader_name),
                executor=executor,
                prefix=prefix,
            )

        write_installed_marker(boot_root, boot_dst, prefix=prefix, ledger=ledger)
    except (SdbootError, OSError) as err:
        _log_error("Install failed, rolling back: %s", err)
        ledger.undo_all()
        raise

    ledger.commit_all()
    _log_info("Installed boot loader into %s", join_path(boot_root, boot_dst))
    return True


__all__ = [
    "InstallError",
    "MOK_MANAGER_EFI",
    "GRUB2_MODULE_DIR",
    "GRUB2_BLI_MODULE",
    "SDBOOT_ENTRIES_SREL",
    "SDBOOT_LOADER_CONF",
    "GRUB2_CFG",
    "RANDOM_SEED_SIZE",
    "copy_shim_files",
    "copy_bootloader",
    "update_sdboot_configuration",
    "update_grub2_configuration",
    "update_random_seed",
    "write_boot_csv",
    "write_installed_marker",
    "write_entry_token",
    "is_installed",
    "place_bootloader_files",
    "install_bootloader",
]

# vim: set et ts=4 sw=4 :
