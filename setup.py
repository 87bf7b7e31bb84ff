#!/usr/bin/env python
from setuptools import setup

from sdbootutil import __version__ as sdbootutil_version

setup(
    name="sdbootutil",
    version=sdbootutil_version,
    description=("""Boot loader management for btrfs snapshot systems."""),
    author="sdbootutil developers",
    url="https://github.com/openSUSE/sdbootutil",
    license="GPLv2",
    test_suite="tests",
    scripts=["bin/sdbootutil"],
    packages=["sdbootutil"],
)


# vim: set et ts=4 sw=4 :
