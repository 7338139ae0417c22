# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Builder class that drives a package table through the build pipeline.
"""
from __future__ import annotations

import logging
import os
import pathlib
import shutil
import sys
from typing import (
    Any,
    Callable,
    Dict,
    List,
    MutableMapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from buildchain.buildenv import buildenv
from buildchain.common import (
    BuildchainException,
    ConfigurationError,
    MissingCustomCommandError,
    default_jobs,
    default_prefix,
    extract_archive,
    work_dirs,
    WorkDirs,
)

from .builders import get_strategy, run_hook
from .download import Download
from .layout import resolve_source_dir
from .table import Package, Table, expand_template

# Type alias for path-like objects
PathLike = Union[str, os.PathLike[str]]

log = logging.getLogger(__name__)

# Directories every prefix is expected to have.
PREFIX_DIRS = ("bin", "lib", "include", "share")

SKIPPED = "skipped"
BUILT = "built"


def _default_populate_env(env: MutableMapping[str, str], dirs: "Dirs") -> None:
    """Default populate_env implementation (does nothing).

    Callers may provide their own implementation via the ``populate_env``
    argument of ``Builder``.
    """
    _ = env
    _ = dirs


class Dirs:
    """
    A container for directories during build time.

    :param dirs: A collection of working directories
    :type dirs: ``buildchain.common.WorkDirs``
    :param name: The name of the package being built
    :type name: str
    :param prefix: The installation prefix
    :type prefix: str
    """

    def __init__(self, dirs: WorkDirs, name: str, prefix: PathLike) -> None:
        self.name = name
        self.root = dirs.root
        self.downloads = dirs.download
        self.logs = dirs.logs
        self.sources = dirs.src
        self.prefix = pathlib.Path(prefix)
        self.source: Optional[pathlib.Path] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Get a dictionary representation of the directories in this collection.

        :return: A dictionary of all the directories
        :rtype: dict
        """
        return {
            x: getattr(self, x)
            for x in [
                "root",
                "prefix",
                "downloads",
                "logs",
                "sources",
                "source",
            ]
        }


class Builder:
    """
    Utility that handles the build process.

    Packages are processed strictly in table order, each one fully finishes
    before the next one starts. The first failure aborts the run.

    :param table: The packages to build
    :type table: ``buildchain.build.common.Table``
    :param prefix: The installation prefix shared by all packages, defaults to ``default_prefix()``
    :type prefix: str
    :param root: The root of the working directories for this build
    :type root: str
    :param jobs: The number of parallel jobs handed to the build tools, defaults to ``default_jobs()``
    :type jobs: int
    :param populate_env: A function to adjust the build environment of each package
    :type populate_env: types.FunctionType
    """

    def __init__(
        self,
        table: Table,
        prefix: Optional[PathLike] = None,
        root: Optional[PathLike] = None,
        jobs: Optional[int] = None,
        populate_env: Optional[Callable[[MutableMapping[str, str], Dirs], None]] = None,
    ) -> None:
        self.table = table
        self.dirs: WorkDirs = work_dirs(root)
        self.prefix = pathlib.Path(prefix if prefix else default_prefix()).resolve()
        self.jobs = jobs if jobs else default_jobs()
        self.populate_env: Callable[[MutableMapping[str, str], Dirs], None] = (
            populate_env if populate_env is not None else _default_populate_env
        )
        self._variables: Optional[Dict[str, str]] = None

    @property
    def sources(self) -> pathlib.Path:
        """Get the directory archives are extracted into."""
        return self.dirs.src

    @property
    def downloads(self) -> pathlib.Path:
        """Get the directory archives are downloaded into."""
        return self.dirs.download

    @property
    def variables(self) -> Dict[str, str]:
        """The template variables shared by all packages."""
        if self._variables is None:
            builtins = {
                "PREFIX": str(self.prefix),
                "JOBS": str(self.jobs),
                "SRC": str(self.sources),
                "DOWNLOADS": str(self.downloads),
            }
            self._variables = self.table.resolve_variables(builtins)
        return self._variables

    def steps(self, names: Optional[Sequence[str]] = None) -> List[Package]:
        """
        The packages to process, in table order.

        :param names: Only process these packages, defaults to all of them
        :type names: list, optional

        :raises ConfigurationError: If a name is not in the table
        """
        if names is None:
            return list(self.table.packages)
        known = self.table.names()
        unknown = [_ for _ in names if _ not in known]
        if unknown:
            raise ConfigurationError(f"Unknown packages: {', '.join(unknown)}")
        return [_ for _ in self.table.packages if _.name in names]

    def expand(self, package: Package) -> Package:
        """
        Get the package with all templates substituted.
        """
        return package.expand(self.variables)

    def is_built(self, package: Package) -> bool:
        """
        True when the package's completion marker exists.

        A marker left behind by a partial install is reported as built.
        """
        return bool(package.marker) and os.path.exists(package.marker)

    def environment(self, dirs: Dirs) -> Dict[str, str]:
        """
        The environment the build tools of a package run with.

        Computed for each package so tools installed earlier in the run are
        picked up.
        """
        env = buildenv(self.prefix)
        env["BUILDCHAIN_JOBS"] = str(self.jobs)
        for name, value in self.table.environment.items():
            env[name] = expand_template(value, self.variables)
        self.populate_env(env, dirs)
        return env

    def _attribute(self, exc: BuildchainException, package: Package, step: str) -> None:
        if exc.package is None:
            exc.package = package.name
        if exc.step is None:
            exc.step = step

    def run(
        self,
        package: Package,
        force: bool = False,
        force_download: bool = False,
    ) -> str:
        """
        Run the build pipeline for one package.

        :param package: The package to build
        :type package: ``buildchain.build.common.Package``
        :param force: Build even if the completion marker exists, defaults to False
        :type force: bool, optional
        :param force_download: Download even if the archive exists, defaults to False
        :type force_download: bool, optional

        :raises BuildchainException: If any step fails, with ``package`` and ``step`` set

        :return: ``built`` or ``skipped``
        :rtype: str
        """
        step = "prepare"
        try:
            package = self.expand(package)
            build_func = get_strategy(package)
            if package.method == "custom" and not package.configure_args.strip():
                raise MissingCustomCommandError(package.name)
        except BuildchainException as exc:
            self._attribute(exc, package, step)
            raise

        if self.is_built(package):
            if not force:
                log.info(
                    "%s %s: already present at %s, skipping",
                    package.name,
                    package.version,
                    package.marker,
                )
                return SKIPPED
            log.info(
                "%s %s: %s exists but force specified, will rebuild and reinstall",
                package.name,
                package.version,
                package.marker,
            )

        dirs = Dirs(self.dirs, package.name, self.prefix)
        os.makedirs(dirs.logs, exist_ok=True)
        root_log = logging.getLogger(None)
        handler = logging.FileHandler(dirs.logs / f"{dirs.name}.log")
        handler.setLevel(logging.NOTSET)
        root_log.addHandler(handler)
        try:
            step = "fetch"
            download = Download(
                package.name,
                package.url,
                archive=package.archive_name,
                destination=dirs.downloads,
            )
            download(force_download=force_download)

            step = "extract"
            log.info("Extracting %s ...", download.filepath.name)
            extract_archive(dirs.sources, download.filepath)

            step = "resolve"
            dirs.source = resolve_source_dir(
                package.name, package.version, download.filepath, dirs.sources
            )
            log.info("Using source directory: %s", dirs.source)

            env = self.environment(dirs)
            _ = dirs.to_dict()
            for k in _:
                log.debug("Directory %s %s", k, _[k])
            for k in env:
                log.debug("Environment %s %s", k, env[k])

            step = "pre-hook"
            run_hook(step, package.pre_hook, env, dirs, package)
            step = "build"
            build_func(env, dirs, package)
            step = "post-hook"
            run_hook(step, package.post_hook, env, dirs, package)
        except BuildchainException as exc:
            self._attribute(exc, package, step)
            log.error("Build of %s failed during %s: %s", package.name, exc.step, exc)
            raise
        finally:
            root_log.removeHandler(handler)
            handler.close()

        log.info("%s %s: build finished", package.name, package.version)
        return BUILT

    def download_files(
        self,
        names: Optional[Sequence[str]] = None,
        force_download: bool = False,
    ) -> Dict[str, str]:
        """
        Download the archives of all packages that are not built yet.

        :param names: The packages to download archives for, defaults to all of them
        :type names: list, optional
        :param force_download: Download even if the archive exists, defaults to False
        :type force_download: bool, optional

        :return: ``downloaded``, ``cached`` or ``skipped`` for each package
        :rtype: dict
        """
        log.info("Starting downloads")
        statuses: Dict[str, str] = {}
        for package in self.steps(names):
            package = self.expand(package)
            if self.is_built(package):
                statuses[package.name] = SKIPPED
                continue
            download = Download(
                package.name,
                package.url,
                archive=package.archive_name,
                destination=self.downloads,
            )
            try:
                fetched = download(force_download=force_download)
            except BuildchainException as exc:
                self._attribute(exc, package, "fetch")
                raise
            statuses[package.name] = "downloaded" if fetched else "cached"
        return statuses

    def build(
        self,
        names: Optional[Sequence[str]] = None,
        force: bool = False,
        force_download: bool = False,
    ) -> Dict[str, str]:
        """
        Build!

        Packages run one at a time in table order, the first failure stops
        the build.

        :param names: The packages to build, defaults to all of them
        :type names: list, optional

        :return: ``built`` or ``skipped`` for each package that ran
        :rtype: dict
        """
        log.info("Starting builds")
        statuses: Dict[str, str] = {}
        for package in self.steps(names):
            statuses[package.name] = self.run(
                package, force=force, force_download=force_download
            )
        return statuses

    def verify(self) -> List[str]:
        """
        Check that the expected artifacts are present in the prefix.

        Missing artifacts are reported and returned, they are never fatal.

        :return: The paths that do not exist
        :rtype: list
        """
        missing: List[str] = []
        for path in self.table.verify_paths(self.variables):
            if os.path.exists(path):
                log.info("OK: %s", path)
            else:
                log.warning("MISSING: %s", path)
                missing.append(path)
        return missing

    def clean(self) -> None:
        """
        Remove extracted sources and logs. The prefix is never touched.
        """
        for _ in [self.sources, self.dirs.logs]:
            try:
                shutil.rmtree(_)
            except PermissionError:
                sys.stderr.write(f"Unable to remove directory: {_}\n")
            except FileNotFoundError:
                pass

    def __call__(
        self,
        names: Optional[Sequence[str]] = None,
        force: bool = False,
        force_download: bool = False,
        download_only: bool = False,
        clean: bool = False,
        log_level: str = "INFO",
    ) -> Tuple[Dict[str, str], List[str]]:
        """
        Prepare the prefix, build the packages and verify the results.

        :param names: The packages to build, defaults to all of them
        :type names: list, optional
        :param force: Rebuild packages whose marker exists, defaults to False
        :type force: bool, optional
        :param force_download: Whether or not to download the content if it already exists, defaults to False
        :type force_download: bool, optional
        :param download_only: Only download the archives, defaults to False
        :type download_only: bool, optional
        :param clean: Remove sources and logs of earlier runs first, defaults to False
        :type clean: bool, optional
        :param log_level: The level of messages written to stderr, defaults to INFO
        :type log_level: str, optional

        :return: The status of each package and the missing artifacts
        :rtype: tuple
        """
        # Validate before anything is written.
        steps = [_.name for _ in self.steps(names)]

        if clean:
            self.clean()

        root_log = logging.getLogger(None)
        root_log.setLevel(logging.NOTSET)

        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(logging.getLevelName(log_level.upper()))
        root_log.addHandler(stream_handler)

        os.makedirs(self.dirs.logs, exist_ok=True)
        file_handler = logging.FileHandler(self.dirs.logs / "build.log")
        file_handler.setLevel(logging.INFO)
        root_log.addHandler(file_handler)

        try:
            log.info("Installing into %s using %d jobs", self.prefix, self.jobs)
            if download_only:
                return self.download_files(steps, force_download=force_download), []
            for _ in PREFIX_DIRS:
                os.makedirs(self.prefix / _, exist_ok=True)
            statuses = self.build(steps, force=force, force_download=force_download)
            missing = self.verify()
            if missing:
                log.warning("%d expected artifacts are missing", len(missing))
            else:
                log.info("All expected artifacts are present")
            return statuses, missing
        finally:
            root_log.removeHandler(file_handler)
            root_log.removeHandler(stream_handler)
            file_handler.close()
