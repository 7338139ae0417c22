# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Entry points for the ``buildchain build`` CLI command.
"""
from __future__ import annotations

import argparse
import os
import signal
import sys
from types import FrameType

from .common import Builder, bundled_tables, load_table
from ..common import BuildchainException, default_jobs, default_prefix

DEFAULT_TABLE = "autotools"

# How much of a failed package's log is echoed to stderr.
LOG_TAIL = 4096


def add_table_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add the options shared by every command that works on a package table.

    :param parser: The parser of the command
    :type parser: ``argparse.ArgumentParser``
    """
    parser.add_argument(
        "--table",
        default=DEFAULT_TABLE,
        type=str,
        help=(
            "A json or pipe delimited package table, or the name of a bundled "
            f"table ({', '.join(bundled_tables())}) [default: %(default)s]"
        ),
    )
    parser.add_argument(
        "--prefix",
        default=default_prefix(),
        type=str,
        help="The installation prefix [default: %(default)s]",
    )


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``build`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    build_subparser = subparsers.add_parser(
        "build", description="Build the packages of a table into a prefix"
    )
    build_subparser.set_defaults(func=main)
    add_table_arguments(build_subparser)
    build_subparser.add_argument(
        "-j",
        "--jobs",
        default=default_jobs(),
        type=int,
        help="The number of parallel make jobs [default: %(default)s]",
    )
    build_subparser.add_argument(
        "-f",
        "--force",
        default=False,
        action="store_true",
        help="Rebuild and reinstall packages that are already present",
    )
    build_subparser.add_argument(
        "--force-download",
        default=False,
        action="store_true",
        help="Force downloading source archives even if they exist",
    )
    build_subparser.add_argument(
        "--download-only",
        default=False,
        action="store_true",
        help="Stop after downloading source archives",
    )
    build_subparser.add_argument(
        "--clean",
        default=False,
        action="store_true",
        help=(
            "Clean up before running the build. This option will remove the "
            "logs and extracted sources, the prefix is left alone."
        ),
    )
    build_subparser.add_argument(
        "--step",
        dest="steps",
        metavar="STEP",
        action="append",
        default=[],
        help=(
            "A package to build alone, can use multiple of this argument. "
            "Packages are still built in table order."
        ),
    )
    build_subparser.add_argument(
        "-v",
        "--verbose",
        default=False,
        action="store_true",
        help="Show the output of the build tools, same as --log-level=debug",
    )
    build_subparser.add_argument(
        "--log-level",
        default="info",
        choices=(
            "error",
            "warning",
            "info",
            "debug",
        ),
        help="Log level determines how verbose the logs will be.",
    )
    build_subparser.add_argument(
        "--list",
        default=False,
        action="store_true",
        help="List the packages of the table and whether they are installed",
    )


def log_tail(path: str | os.PathLike[str], size: int = LOG_TAIL) -> str:
    """
    The last bytes of a log file, or an empty string if there is none.
    """
    try:
        with open(path, "rb") as fp:
            fp.seek(0, os.SEEK_END)
            fp.seek(max(fp.tell() - size, 0))
            return fp.read().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return ""


def list_packages(builder: Builder) -> None:
    """
    Print each package of the table and whether its marker is present.
    """
    for package in builder.table.packages:
        package = builder.expand(package)
        state = "installed" if builder.is_built(package) else "missing"
        print(f"{package.name:<16} {package.version:<12} {package.method:<18} {state}")


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint to the ``build`` command.

    :param args: The arguments to the command
    :type args: ``argparse.Namespace``
    """

    def signal_handler(_signal: int, frame: FrameType | None) -> None:
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)

    steps = None
    if args.steps:
        steps = [_.strip() for _ in args.steps]
    log_level = "debug" if args.verbose else args.log_level

    builder = None
    try:
        builder = Builder(load_table(args.table), prefix=args.prefix, jobs=args.jobs)
        if args.list:
            list_packages(builder)
            sys.exit(0)
        statuses, missing = builder(
            names=steps,
            force=args.force,
            force_download=args.force_download,
            download_only=args.download_only,
            clean=args.clean,
            log_level=log_level,
        )
    except BuildchainException as exc:
        if exc.package and exc.step:
            sys.stderr.write(
                f"Build of {exc.package} failed during {exc.step}: {exc}\n"
            )
        else:
            sys.stderr.write(f"Error: {exc}\n")
        if builder is not None and exc.package:
            tail = log_tail(builder.dirs.logs / f"{exc.package}.log")
            if tail:
                sys.stderr.write(f"Last lines of the {exc.package} log:\n{tail}")
                if not tail.endswith("\n"):
                    sys.stderr.write("\n")
        sys.stderr.flush()
        sys.exit(1)

    built = [_ for _ in statuses if statuses[_] == "built"]
    print(f"Built {len(built)} of {len(statuses)} packages into {builder.prefix}")
    for path in missing:
        print(f"MISSING: {path}")
    sys.exit(0)
