# Copyright sdbootutil developers
#
# sdbootutil/__init__.py - sdbootutil package initialisation
#
# This file is part of the sdbootutil project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides classes and functions for installing, checking
and updating the boot loader of a system whose root file system is a
series of read-only btrfs snapshots.

The ``sdbootutil`` package contains global definitions, functions to
configure the sdbootutil environment, and logging infrastructure for
the package.

Individual sub-modules provide interfaces to the various components:
boot loader detection, version extraction and ordering, rollback of
file replacements, installation, the update decision engine and the
``sdbootutil`` command line interface.

See the sub-module documentation for specific information on the
classes and interfaces provided, and the ``sdbootutil`` tool help
output for information on using the command line interface.
"""
from ._sdbootutil import *
from ._sdbootutil import __all__

__version__ = "0.1.0"
# vim: set et ts=4 sw=4 :
