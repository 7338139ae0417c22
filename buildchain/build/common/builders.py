# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build strategies that turn an extracted source tree into installed files.

Every strategy takes the build environment, the package's directories and
the expanded package descriptor. Tools run from ``dirs.source`` and install
into ``dirs.prefix``.
"""
from __future__ import annotations

import logging
import shlex
from typing import TYPE_CHECKING, Callable, Dict, List, MutableMapping, Sequence

from buildchain.common import (
    BuildFailedError,
    CommandError,
    MissingCustomCommandError,
    UnknownBuildMethodError,
    runcmd,
)

if TYPE_CHECKING:
    from .builder import Dirs
    from .table import Package

log = logging.getLogger(__name__)

SHELL = "/bin/sh"

# Exit status reported when a tool can not be started at all.
NOT_FOUND = 127

CMAKE_BUILD_DIR = "_build"

EnvMapping = MutableMapping[str, str]
BuildFunc = Callable[[EnvMapping, "Dirs", "Package"], None]


def run_step(
    step: str,
    cmd: Sequence[str],
    env: EnvMapping,
    dirs: Dirs,
    package: Package,
) -> None:
    """
    Run one command of a build inside the source directory.

    :param step: The name of the step, used when reporting failures
    :type step: str
    :param cmd: The command to run
    :type cmd: list

    :raises BuildFailedError: If the command fails or can not be started
    """
    log.info("%s: %s", package.name, " ".join(cmd))
    try:
        runcmd(list(cmd), env=env, cwd=dirs.source)
    except CommandError as exc:
        raise BuildFailedError(package.name, step, exc.returncode) from exc
    except OSError as exc:
        log.error("Unable to run %s: %s", cmd[0], exc)
        raise BuildFailedError(package.name, step, NOT_FOUND) from exc


def run_shell(
    step: str,
    command: str,
    env: EnvMapping,
    dirs: Dirs,
    package: Package,
) -> None:
    """
    Run a shell command inside the source directory.
    """
    run_step(step, [SHELL, "-c", command], env, dirs, package)


def run_hook(
    step: str,
    command: str,
    env: EnvMapping,
    dirs: Dirs,
    package: Package,
) -> None:
    """
    Run a pre or post build hook, if there is one.
    """
    if not command.strip():
        return
    log.info("Running %s command for %s", step, package.name)
    run_shell(step, command, env, dirs, package)


def _configure_args(package: Package) -> List[str]:
    return shlex.split(package.configure_args)


def _jobs(env: EnvMapping) -> str:
    return env.get("BUILDCHAIN_JOBS", "1")


def _make_install(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    run_step("build", ["make", f"-j{_jobs(env)}"], env, dirs, package)
    run_step("install", ["make", "install"], env, dirs, package)


def build_autotools(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    """
    Bootstrap if needed, configure with shared libraries only, make and install.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``buildchain.build.common.Dirs``
    :param package: The package being built
    :type package: ``buildchain.build.common.Package``
    """
    if not (dirs.source / "configure").exists():
        log.info("Running autoreconf -i")
        run_step("bootstrap", ["autoreconf", "-i"], env, dirs, package)
    cmd = [
        "./configure",
        f"--prefix={dirs.prefix}",
        "--enable-shared",
        "--disable-static",
    ]
    cmd.extend(_configure_args(package))
    run_step("configure", cmd, env, dirs, package)
    _make_install(env, dirs, package)


def build_configure(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    """
    Run an existing configure script with only the prefix added, make and install.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``buildchain.build.common.Dirs``
    :param package: The package being built
    :type package: ``buildchain.build.common.Package``
    """
    cmd = ["./configure", f"--prefix={dirs.prefix}"]
    cmd.extend(_configure_args(package))
    run_step("configure", cmd, env, dirs, package)
    _make_install(env, dirs, package)


def build_make_prefix(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    """
    Build a hand written Makefile and install with ``PREFIX`` set on the command line.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``buildchain.build.common.Dirs``
    :param package: The package being built
    :type package: ``buildchain.build.common.Package``
    """
    run_step("build", ["make", f"-j{_jobs(env)}"], env, dirs, package)
    run_step(
        "install", ["make", "install", f"PREFIX={dirs.prefix}"], env, dirs, package
    )


def build_custom(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    """
    Run the package's configure arguments as a shell command.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``buildchain.build.common.Dirs``
    :param package: The package being built
    :type package: ``buildchain.build.common.Package``

    :raises MissingCustomCommandError: If the package has no command
    """
    if not package.configure_args.strip():
        raise MissingCustomCommandError(package.name)
    log.info("Running custom build command for %s", package.name)
    run_shell("custom", package.configure_args, env, dirs, package)


def build_cmake(env: EnvMapping, dirs: Dirs, package: Package) -> None:
    """
    Configure, build and install a CMake project out of tree.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``buildchain.build.common.Dirs``
    :param package: The package being built
    :type package: ``buildchain.build.common.Package``
    """
    cmd = [
        "cmake",
        "-S",
        ".",
        "-B",
        CMAKE_BUILD_DIR,
        f"-DCMAKE_INSTALL_PREFIX={dirs.prefix}",
        "-DCMAKE_BUILD_TYPE=Release",
    ]
    cmd.extend(_configure_args(package))
    run_step("configure", cmd, env, dirs, package)
    cmd = ["cmake", "--build", CMAKE_BUILD_DIR, "-j", _jobs(env)]
    run_step("build", cmd, env, dirs, package)
    cmd = ["cmake", "--install", CMAKE_BUILD_DIR]
    run_step("install", cmd, env, dirs, package)


STRATEGIES: Dict[str, BuildFunc] = {
    "autotools": build_autotools,
    "configure": build_configure,
    "make-with-prefix": build_make_prefix,
    "custom": build_custom,
    "cmake": build_cmake,
}

# Spellings found in older tables.
METHOD_ALIASES = {
    "make-prefix": "make-with-prefix",
}


def get_strategy(package: Package) -> BuildFunc:
    """
    The build function for a package's build method.

    :param package: The package being built
    :type package: ``buildchain.build.common.Package``

    :raises UnknownBuildMethodError: If the method is not implemented

    :return: The build function
    :rtype: types.FunctionType
    """
    method = METHOD_ALIASES.get(package.method, package.method)
    try:
        return STRATEGIES[method]
    except KeyError:
        raise UnknownBuildMethodError(package.name, package.method) from None
