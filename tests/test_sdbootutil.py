# Copyright sdbootutil developers
#
# tests/test_sdbootutil.py - sdbootutil module tests.
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
import unittest
import logging
from unittest import mock

import sdbootutil

from tests import *

log = logging.getLogger()


class SdbootutilTests(unittest.TestCase):
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        reset_sdboot_config()

    # Module tests
    def test_import(self):
        import sdbootutil

    def test_version(self):
        self.assertTrue(sdbootutil.__version__)

    # Helper routine tests

    def test_parse_name_value_default(self):
        # Test each allowed quoting style
        for nvp in ("n=v", "n='v'", 'n="v"', 'n = "v"'):
            with self.subTest(nvp=nvp):
                (name, value) = sdbootutil.parse_name_value(nvp)
                self.assertEqual(name, "n")
                self.assertEqual(value, "v")

        # Assert that a comment following a value is permitted, with or
        # without intervening whitespace.
        (name, value) = sdbootutil.parse_name_value("n=v # Qux.")
        self.assertEqual(value, "v")
        (name, value) = sdbootutil.parse_name_value("n=v#Qux.")
        self.assertEqual(value, "v")
        (name, value) = sdbootutil.parse_name_value('n="v # not a comment"')
        self.assertEqual(value, "v # not a comment")

        # Test that values with embedded assignment are accepted
        (name, value) = sdbootutil.parse_name_value("n=v=v1")
        self.assertEqual(value, "v=v1")

    def test_parse_name_value_os_release(self):
        (name, value) = sdbootutil.parse_name_value(
            'PRETTY_NAME="openSUSE Tumbleweed"\n'
        )
        self.assertEqual(name, "PRETTY_NAME")
        self.assertEqual(value, "openSUSE Tumbleweed")
        (name, value) = sdbootutil.parse_name_value("VERSION_ID=20240101")
        self.assertEqual(value, "20240101")
        (name, value) = sdbootutil.parse_name_value('ANSI_COLOR="0;32')
        self.assertEqual(value, "0;32")

    def test_parse_name_value_malformed(self):
        for nvp in ("n v", "n+=v", "=v", "n-x=v"):
            with self.subTest(nvp=nvp):
                with self.assertRaises(ValueError):
                    sdbootutil.parse_name_value(nvp)

    def test_parse_name_value_separator(self):
        (name, value) = sdbootutil.parse_name_value("n: v", separator=":")
        self.assertEqual(name, "n")
        self.assertEqual(value, "v")

    def test_blank_or_comment(self):
        for line in ("", "   \n", "# comment", "   # comment\n"):
            with self.subTest(line=line):
                self.assertTrue(sdbootutil.blank_or_comment(line))
        self.assertFalse(sdbootutil.blank_or_comment("ID=opensuse # comment"))

    # Path construction

    def test_join_path(self):
        join_path = sdbootutil.join_path
        self.assertEqual(join_path(), "")
        self.assertEqual(join_path("/a", "/b", "c"), "/a/b/c")
        self.assertEqual(join_path(None, "/boot/efi", "", "EFI"), "/boot/efi/EFI")
        self.assertEqual(join_path("/a", "/"), "/a")
        self.assertEqual(join_path("/a", None), "/a")
        self.assertEqual(join_path("a", "/EFI/systemd", "grub.efi"), "a/EFI/systemd/grub.efi")

    def test_snapshot_ref(self):
        snapshot = sdbootutil.SnapshotRef(3)
        self.assertEqual(snapshot.snapshot_id, 3)
        self.assertEqual(snapshot.snapshot_root, sdbootutil.SNAPSHOTS_DIR)
        self.assertEqual(snapshot.path, "/.snapshots/3/snapshot")
        self.assertEqual(str(snapshot), "/.snapshots/3/snapshot")
        self.assertEqual(repr(snapshot), 'SnapshotRef(3, snapshot_root="/.snapshots")')

    def test_snapshot_ref_from_string(self):
        self.assertEqual(sdbootutil.SnapshotRef("42").snapshot_id, 42)

    def test_snapshot_ref_negative(self):
        with self.assertRaises(ValueError):
            sdbootutil.SnapshotRef(-1)

    def test_snapshot_ref_not_a_number(self):
        with self.assertRaises(ValueError):
            sdbootutil.SnapshotRef("current")

    def test_snapshot_ref_equality(self):
        SnapshotRef = sdbootutil.SnapshotRef
        self.assertEqual(SnapshotRef(1), SnapshotRef(1))
        self.assertNotEqual(SnapshotRef(1), SnapshotRef(2))
        self.assertNotEqual(SnapshotRef(1), SnapshotRef(1, snapshot_root="/snaps"))
        self.assertNotEqual(SnapshotRef(1), 1)
        self.assertEqual(len({SnapshotRef(1), SnapshotRef(1), SnapshotRef(2)}), 2)

    def test_snapshot_ref_read_only(self):
        with self.assertRaises(AttributeError):
            sdbootutil.SnapshotRef(1).snapshot_id = 2

    def test_snapshot_path(self):
        snapshot_path = sdbootutil.snapshot_path
        SnapshotRef = sdbootutil.SnapshotRef
        self.assertEqual(snapshot_path(2, "usr/lib"), "/.snapshots/2/snapshot/usr/lib")
        self.assertEqual(
            snapshot_path(SnapshotRef(2), "/usr/lib", prefix="/tmp/root"),
            "/tmp/root/.snapshots/2/snapshot/usr/lib",
        )
        self.assertEqual(
            snapshot_path(SnapshotRef(1, snapshot_root="/snaps"), "x", prefix="/p"),
            "/p/snaps/1/snapshot/x",
        )

    def test_snapshot_path_none(self):
        self.assertEqual(sdbootutil.snapshot_path(None, "etc/machine-id"), "/etc/machine-id")
        self.assertEqual(
            sdbootutil.snapshot_path(None, "etc", prefix="/tmp/root"), "/tmp/root/etc"
        )

    def test_get_shimdir(self):
        self.assertEqual(
            sdbootutil.get_shimdir(), "/usr/share/efi/%s" % sdbootutil.HOST_ARCH
        )


class SdbootConfigTests(unittest.TestCase):
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        reset_sdboot_config()

    def test_set_get_sdboot_config(self):
        sc = sdbootutil.SdbootConfig(boot_root="/efi")
        sdbootutil.set_sdboot_config(sc)
        self.assertIs(sdbootutil.get_sdboot_config(), sc)

    def test_set_sdboot_config_duck_type(self):
        class OtherConfig(object):
            boot_root = "/efi"
            shimdir = "/usr/share/efi/x86_64"

        other = OtherConfig()
        sdbootutil.set_sdboot_config(other)
        self.assertIs(sdbootutil.get_sdboot_config(), other)

    def test_set_sdboot_config_bad_type(self):
        with self.assertRaises(TypeError):
            sdbootutil.set_sdboot_config("/efi")

    def test_set_get_sdboot_config_path(self):
        sdbootutil.set_sdboot_config_path("/tmp/sdbootutil.conf")
        self.assertEqual(sdbootutil.get_sdboot_config_path(), "/tmp/sdbootutil.conf")
        reset_sdboot_config()
        self.assertEqual(
            sdbootutil.get_sdboot_config_path(), sdbootutil.DEFAULT_SDBOOT_CONFIG_PATH
        )

    def test_sdboot_config_values(self):
        sc = sdbootutil.SdbootConfig(
            boot_root="/efi",
            firmware_arch="aa64",
            entry_token="opensuse",
            no_variables=True,
            verbosity=2,
            prefix="/tmp/root",
        )
        self.assertEqual(sc.boot_root, "/efi")
        self.assertEqual(sc.shimdir, sdbootutil.get_shimdir())
        self.assertEqual(sc.firmware_arch, "aa64")
        self.assertEqual(sc.entry_token, "opensuse")
        self.assertTrue(sc.no_variables)
        self.assertFalse(sc.no_random_seed)
        self.assertEqual(sc.verbosity, 2)
        self.assertEqual(sc.prefix, "/tmp/root")

    def test_sdboot_config_str(self):
        xstr = (
            "[global]\nboot_root = /boot/efi\nshimdir = %s\n"
            "firmware_arch = x64\n\n"
            "[install]\nno_variables = False\nno_random_seed = False\n"
            % sdbootutil.get_shimdir()
        )
        self.assertEqual(str(sdbootutil.SdbootConfig()), xstr)


class SdbootLoggerTests(unittest.TestCase):
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.logger = logging.getLogger("sdbootutil.tests")

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        sdbootutil.set_debug_mask(0)
        self.logger.set_debug_mask(0)

    def test_logger_class(self):
        self.assertIsInstance(self.logger, sdbootutil.SdbootLogger)

    def test_set_debug_mask(self):
        sdbootutil.set_debug_mask(sdbootutil.SDBOOT_DEBUG_ALL)
        self.assertEqual(sdbootutil.get_debug_mask(), sdbootutil.SDBOOT_DEBUG_ALL)
        sdbootutil.set_debug_mask(0)
        self.assertEqual(sdbootutil.get_debug_mask(), 0)

    def test_set_debug_mask_bad_mask(self):
        for mask in (-1, sdbootutil.SDBOOT_DEBUG_ALL + 1):
            with self.subTest(mask=mask):
                with self.assertRaises(ValueError):
                    sdbootutil.set_debug_mask(mask)

    def test_logger_set_debug_mask_bad_mask(self):
        with self.assertRaises(ValueError):
            self.logger.set_debug_mask(sdbootutil.SDBOOT_DEBUG_ALL + 1)

    def test_debug_masked(self):
        self.logger.set_debug_mask(sdbootutil.SDBOOT_DEBUG_VERSION)
        with mock.patch.object(self.logger, "debug") as debug:
            self.logger.debug_masked("not logged")
            sdbootutil.set_debug_mask(sdbootutil.SDBOOT_DEBUG_DETECT)
            self.logger.debug_masked("not logged")
            sdbootutil.set_debug_mask(
                sdbootutil.SDBOOT_DEBUG_DETECT | sdbootutil.SDBOOT_DEBUG_VERSION
            )
            self.logger.debug_masked("logged %s", "once")
        debug.assert_called_once_with("logged %s", "once")


# vim: set et ts=4 sw=4 :
