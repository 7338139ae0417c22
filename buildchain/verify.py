# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The ``buildchain verify`` command.
"""
from __future__ import annotations

import argparse
import logging
import sys

from .build import add_table_arguments
from .build.common import Builder, load_table
from .common import BuildchainException

log = logging.getLogger(__name__)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``verify`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "verify", description="Check that the artifacts of a table are installed"
    )
    subparser.set_defaults(func=main)
    add_table_arguments(subparser)


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``buildchain verify`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    try:
        builder = Builder(load_table(args.table), prefix=args.prefix)
        missing = builder.verify()
    except BuildchainException as exc:
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)
    for path in missing:
        print(f"MISSING: {path}")
    if missing:
        sys.exit(1)
    print("All expected artifacts are present")
    sys.exit(0)
