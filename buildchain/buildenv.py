# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The build environment handed to every build tool.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import pathlib
import sys
from typing import Mapping, Optional

from .common import build_arch, default_prefix

log = logging.getLogger(__name__)

MACOS_DEPLOYMENT_TARGET = "11.0"

# Variables copied from the caller's environment as is.
PASSTHROUGH = (
    "PATH",
    "HOME",
    "TMPDIR",
    "LANG",
    "LC_ALL",
    "SDKROOT",
    "TERM",
)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``buildchain buildenv`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "buildenv", description="Buildchain build environment"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--prefix",
        default=default_prefix(),
        type=pathlib.Path,
        help="The installation prefix [default: %(default)s]",
    )
    subparser.add_argument(
        "--json",
        default=False,
        action="store_true",
        help=("Output json to stdout instead of export statments"),
    )


def _join(*parts: Optional[str]) -> str:
    return " ".join(_ for _ in parts if _)


def buildenv(
    prefix: str | os.PathLike[str],
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """
    Build environment variable mapping for a prefix.

    Only an allow list of variables is taken from ``environ``; compiler and
    linker flags found there are appended after the prefix's own flags.

    :param prefix: The installation prefix
    :type prefix: str
    :param environ: The caller's environment, defaults to ``os.environ``
    :type environ: dict

    :return: The environment to run build tools with
    :rtype: dict
    """
    if environ is None:
        environ = os.environ
    prefix = pathlib.Path(prefix)
    env = {k: environ[k] for k in PASSTHROUGH if k in environ}
    path = environ.get("PATH", os.defpath)
    env["PATH"] = f"{prefix}/bin{os.pathsep}{path}"
    pkg_config_path = [f"{prefix}/lib/pkgconfig", f"{prefix}/share/pkgconfig"]
    if environ.get("PKG_CONFIG_PATH"):
        pkg_config_path.append(environ["PKG_CONFIG_PATH"])
    env["PKG_CONFIG_PATH"] = os.pathsep.join(pkg_config_path)
    pkgconf = prefix / "bin" / "pkgconf"
    if pkgconf.exists():
        env["PKG_CONFIG"] = str(pkgconf)
    env["LDFLAGS"] = _join(
        f"-L{prefix}/lib", f"-Wl,-rpath,{prefix}/lib", environ.get("LDFLAGS")
    )
    env["CPPFLAGS"] = _join(f"-I{prefix}/include", environ.get("CPPFLAGS"))
    arch_flags = None
    if sys.platform == "darwin":
        arch_flags = f"-arch {build_arch()}"
        env["MACOSX_DEPLOYMENT_TARGET"] = environ.get(
            "MACOSX_DEPLOYMENT_TARGET", MACOS_DEPLOYMENT_TARGET
        )
    for flags in ("CFLAGS", "CXXFLAGS"):
        value = _join(arch_flags, environ.get(flags))
        if value:
            env[flags] = value
    env["BUILDCHAIN_PREFIX"] = str(prefix)
    env["PREFIX"] = str(prefix)
    return env


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``buildchain buildenv`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    env = buildenv(args.prefix)
    if args.json:
        print(json.dumps(env))
        sys.exit(0)

    script = ""
    for k, v in env.items():
        script += f'export {k}="{v}"\n'

    print(script)
    sys.exit(0)
