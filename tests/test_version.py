# Copyright sdbootutil developers
#
# tests/test_version.py - sdbootutil version extraction and ordering tests
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
import unittest
import logging
from os.path import join

log = logging.getLogger()

from sdbootutil import *
from sdbootutil.version import *

from tests import *


class FindVersionTests(unittest.TestCase):
    """Tests for the pure ``find_version()`` and
    ``version_from_content()`` functions. Cases in this class do not
    touch the file system.
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_find_version(self):
        content = b"Some text before version: START 1.2.3 END some text after"
        self.assertEqual(find_version(content, b"START ", b" END"), "1.2.3")

    def test_find_version_no_start_marker(self):
        content = b"Some text before version: 1.2.3 END some text after"
        self.assertIsNone(find_version(content, b"START ", b" END"))

    def test_find_version_no_end_marker(self):
        content = b"Some text before version: START 1.2.3 some text after"
        self.assertIsNone(find_version(content, b"START ", b" END"))

    def test_find_version_end_marker_before_start(self):
        content = b" END first, then START 1.2.3 and nothing else"
        self.assertIsNone(find_version(content, b"START ", b" END"))

    def test_find_version_binary_markers(self):
        content = b"Here is the version: \x012.34\x00; and some more text"
        self.assertEqual(find_version(content, b"version: \x01", b"\x00;"), "2.34")

    def test_find_version_invalid_utf8(self):
        content = b"START \xff\xfe\xfd END"
        self.assertIsNone(find_version(content, b"START ", b" END"))

    def test_find_version_empty_content(self):
        self.assertIsNone(find_version(b"", b"START ", b" END"))

    def test_find_version_first_occurrence(self):
        content = b"START 1.0 END START 2.0 END"
        self.assertEqual(find_version(content, b"START ", b" END"), "1.0")

    def test_version_from_content_sdboot(self):
        content = b"#### LoaderInfo: systemd-boot 253.4+suse.17.gbe772961ad ####"
        self.assertEqual(version_from_content(content), "253.4+suse.17.gbe772961ad")

    def test_version_from_content_grub2(self):
        content = b"GNU GRUB  version %s\x002.10\x00"
        self.assertEqual(version_from_content(content), "2.10")

    def test_version_from_content_synthetic_images(self):
        self.assertEqual(version_from_content(sdboot_image()), SDBOOT_VERSION)
        self.assertEqual(version_from_content(grub2_image()), GRUB2_VERSION)

    def test_version_from_content_no_marker(self):
        self.assertIsNone(version_from_content(b"MZ\x00\x00 no version here"))


class BootloaderVersionTests(unittest.TestCase):
    """Tests for ``bootloader_version()`` using a sandboxed file system."""

    shimdir = "/usr/share/efi/x86_64"
    boot_root = "/boot/efi"
    boot_dst = "/EFI/systemd"

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        reset_sandbox()

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        rm_sandbox()

    def test_bootloader_version_with_shim(self):
        write_file(join(SANDBOX_PATH, "usr/share/efi/x86_64/shim.efi"), b"shim")
        write_file(
            join(SANDBOX_PATH, "boot/efi/EFI/systemd/grub.efi"),
            b"#### LoaderInfo: systemd-boot 255.4+suse.17.gbe772961ad ####",
        )
        version = bootloader_version(
            None,
            "x64",
            self.shimdir,
            self.boot_root,
            self.boot_dst,
            prefix=SANDBOX_PATH,
        )
        self.assertEqual(version, "255.4+suse.17.gbe772961ad")

    def test_bootloader_version_without_shim(self):
        make_sdboot(None, version="256.1")
        write_file(
            join(SANDBOX_PATH, "boot/efi/EFI/systemd/systemd-bootx64.efi"),
            sdboot_image("255.2"),
        )
        version = bootloader_version(
            None,
            "x64",
            self.shimdir,
            self.boot_root,
            self.boot_dst,
            prefix=SANDBOX_PATH,
        )
        self.assertEqual(version, "255.2")

    def test_bootloader_version_explicit_file(self):
        image = write_file(join(SANDBOX_PATH, "image.efi"), grub2_image("2.06"))
        version = bootloader_version(
            None,
            "x64",
            self.shimdir,
            self.boot_root,
            self.boot_dst,
            filename=image,
            prefix=SANDBOX_PATH,
        )
        self.assertEqual(version, "2.06")

    def test_bootloader_version_missing_file(self):
        with self.assertRaises(VersionError) as cm:
            bootloader_version(
                None,
                "x64",
                self.shimdir,
                self.boot_root,
                self.boot_dst,
                filename=join(SANDBOX_PATH, "nonexistent.efi"),
                prefix=SANDBOX_PATH,
            )
        self.assertTrue(str(cm.exception).startswith("File does not exist:"))

    def test_bootloader_version_not_found(self):
        image = write_file(join(SANDBOX_PATH, "image.efi"), b"MZ nothing to see")
        with self.assertRaises(VersionError) as cm:
            bootloader_version(
                None,
                "x64",
                self.shimdir,
                self.boot_root,
                self.boot_dst,
                filename=image,
                prefix=SANDBOX_PATH,
            )
        self.assertEqual(str(cm.exception), "Version not found")

    def test_bootloader_image_path_with_shim(self):
        write_file(join(SANDBOX_PATH, "usr/share/efi/x86_64/shim.efi"), b"shim")
        path = bootloader_image_path(
            None, "x64", self.shimdir, self.boot_root, self.boot_dst, prefix=SANDBOX_PATH
        )
        self.assertEqual(path, join(SANDBOX_PATH, "boot/efi/EFI/systemd/grub.efi"))


class VersionOrderingTests(unittest.TestCase):
    """Tests for ``parse_version()``, ``compare_versions()`` and
    ``is_lower()``.
    """

    lower_pairs = [
        ("1.0", "2.0"),
        ("1.0", "1.1"),
        ("1.2.0", "1.2.1"),
        ("1.2.1", "1.2.1.1"),
        ("0.9.9", "1.0.0"),
        ("255.3+suse.16.g12345678", "255.4+suse.17.gbe772961ad"),
        ("255.4+suse.16.g12345678", "255.4+suse.17.gbe772961ad"),
        ("253.4+suse.17.gbe772961ad", "256.4+suse.17.gbe772961ad"),
        ("2.10", "2.12"),
        ("1.0.0-alpha", "1.0.0-alpha.1"),
        ("1.0.0+build.1", "1.0.0+build.2"),
        ("1.0.0-alpha+build.1", "1.0.0-beta+build.2"),
        ("0.9.9-alpha+001", "1.0.0-beta+exp.sha.5114f85"),
        ("1.0.0-rc.1+build.1", "1.0.0-rc.1+build.2"),
        ("1.0.0-dev.foo.bar+123", "1.0.0-dev.foo.baz+124"),
        ("1.0-1", "1.0-a"),
    ]

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)

    def test_is_lower(self):
        for (lower, higher) in self.lower_pairs:
            with self.subTest(lower=lower, higher=higher):
                self.assertTrue(is_lower(lower, higher))

    def test_is_lower_reversed(self):
        for (lower, higher) in self.lower_pairs:
            with self.subTest(lower=lower, higher=higher):
                self.assertFalse(is_lower(higher, lower))

    def test_is_lower_equal(self):
        for (version, _higher) in self.lower_pairs:
            with self.subTest(version=version):
                self.assertFalse(is_lower(version, version))

    def test_is_lower_newer_suse_build(self):
        self.assertFalse(
            is_lower("255.5+suse.18.gabcd1234", "255.4+suse.17.gbe772961ad")
        )

    def test_is_lower_drops_non_numeric_main_segments(self):
        self.assertTrue(is_lower("1.x.2", "1.3"))
        self.assertEqual(compare_versions("1.x.2", "1.2"), 0)

    def test_compare_versions(self):
        self.assertTrue(compare_versions("1.0", "2.0") < 0)
        self.assertTrue(compare_versions("2.0", "1.0") > 0)
        self.assertEqual(compare_versions("2.12", "2.12"), 0)

    def test_parse_version(self):
        (main, pre, build) = parse_version("1.2.3-rc.1+build.5")
        self.assertEqual(main, [1, 2, 3])
        self.assertEqual(pre, [("rc", None), ("1", 1)])
        self.assertEqual(build, [("build", None), ("5", 5)])

    def test_parse_version_suse(self):
        (main, pre, build) = parse_version("255.4+suse.17.gbe772961ad")
        self.assertEqual(main, [255, 4])
        self.assertEqual(build, [("suse", None), ("17", 17), ("gbe772961ad", None)])


# vim: set et ts=4 sw=4 :
