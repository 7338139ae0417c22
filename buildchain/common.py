# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around buildchain.
"""
from __future__ import annotations

import http.client
import logging
import multiprocessing
import os
import pathlib
import platform
import selectors
import subprocess
import tarfile
import time
import zipfile
from typing import IO, Any, BinaryIO, Literal, Mapping, Optional, Union, cast

# buildchain package version
__version__ = "0.1.0"

log = logging.getLogger(__name__)

MODULE_DIR = pathlib.Path(__file__).resolve().parent

DEFAULT_DATA_DIR = pathlib.Path.home() / ".local" / "buildchain"

DATA_DIR = pathlib.Path(
    os.environ.get("BUILDCHAIN_DATA", DEFAULT_DATA_DIR)
).resolve()

REQUEST_HEADERS = {"User-Agent": f"buildchain {__version__}"}

TarReadMode = Literal["r:gz", "r:xz", "r:bz2"]

# Ordered so that the longest suffixes are matched first.
SUPPORTED_ARCHIVES: Mapping[str, str] = {
    ".tar.gz": "gztar",
    ".tgz": "gztar",
    ".tar.xz": "xztar",
    ".tar.bz2": "bztar",
    ".zip": "zip",
}

_TAR_MODES: Mapping[str, TarReadMode] = {
    "gztar": "r:gz",
    "xztar": "r:xz",
    "bztar": "r:bz2",
}


class BuildchainException(Exception):
    """
    Base class for exeptions generated from buildchain.

    The orchestrator fills in ``package`` and ``step`` when an exception
    escapes the processing of a package.
    """

    package: Optional[str] = None
    step: Optional[str] = None


class ConfigurationError(BuildchainException):
    """
    A descriptor table or option is malformed.
    """


class FetchError(BuildchainException):
    """
    Downloading a remote artifact failed.
    """

    def __init__(self, url: str, error: BaseException) -> None:
        super().__init__(f"Unable to fetch {url}: {error}")
        self.url = url
        self.error = error


class UnsupportedFormatError(BuildchainException):
    """
    An archive does not have one of the supported suffixes.
    """

    def __init__(self, archive: Union[str, os.PathLike[str]]) -> None:
        supported = ", ".join(SUPPORTED_ARCHIVES)
        super().__init__(
            f"Unsupported archive format: {archive} (supported: {supported})"
        )
        self.archive = os.fspath(archive)


class SourceDirectoryNotFoundError(BuildchainException):
    """
    The source directory of an extracted archive could not be determined.
    """

    def __init__(self, archive: Union[str, os.PathLike[str]]) -> None:
        super().__init__(f"Could not determine source directory for {archive}")
        self.archive = os.fspath(archive)


class CommandError(BuildchainException):
    """
    A command finished with a non zero exit code.
    """

    def __init__(self, cmd: Any, returncode: int) -> None:
        if isinstance(cmd, (list, tuple)):
            cmd = " ".join(str(_) for _ in cmd)
        super().__init__(f"Build cmd '{cmd}' failed with exit code {returncode}")
        self.cmd = cmd
        self.returncode = returncode


class BuildFailedError(BuildchainException):
    """
    A build tool exited with a non zero exit code.
    """

    def __init__(self, package: str, step: str, returncode: int) -> None:
        super().__init__(f"{package}: {step} exited with status {returncode}")
        self.package = package
        self.step = step
        self.returncode = returncode


class MissingCustomCommandError(BuildchainException):
    """
    A package uses the custom build method without a command.
    """

    def __init__(self, package: str) -> None:
        super().__init__(
            f"Package {package} specified 'custom' but no command provided"
        )
        self.package = package


class UnknownBuildMethodError(BuildchainException):
    """
    A package names a build method that is not implemented.
    """

    def __init__(self, package: str, method: str) -> None:
        super().__init__(f"Unknown build method '{method}' for {package}")
        self.package = package
        self.method = method


def build_arch() -> str:
    """
    Return the current machine.
    """
    machine = platform.machine()
    return machine.lower()


def default_prefix() -> pathlib.Path:
    """
    The default installation prefix.

    ``BUILDCHAIN_PREFIX`` wins over ``PREFIX``, both fall back to ``~/local``.
    """
    for name in ("BUILDCHAIN_PREFIX", "PREFIX"):
        value = os.environ.get(name)
        if value:
            return pathlib.Path(value).expanduser().resolve()
    return pathlib.Path.home() / "local"


def default_jobs() -> int:
    """
    The number of parallel jobs handed to make.

    Honors ``CPU_COUNT`` when it is set to a positive integer.
    """
    value = os.environ.get("CPU_COUNT", "")
    try:
        jobs = int(value)
    except ValueError:
        jobs = 0
    if jobs > 0:
        return jobs
    return multiprocessing.cpu_count()


def work_root(
    root: Optional[Union[str, os.PathLike[str]]] = None,
) -> pathlib.Path:
    """
    Get the root directory that all other buildchain working directories should be based on.

    :param root: An explicitly requested root directory
    :type root: str

    :return: An absolute path to the buildchain root working directory
    :rtype: ``pathlib.Path``
    """
    if root is not None:
        base = pathlib.Path(root).resolve()
    else:
        base = DATA_DIR
    return base


def work_dir(
    name: str, root: Optional[Union[str, os.PathLike[str]]] = None
) -> pathlib.Path:
    """
    Get the absolute path to the buildchain working directory of the given name.

    :param name: The name of the directory
    :type name: str
    :param root: The root directory that this working directory will be relative to
    :type root: str

    :return: An absolute path to the requested buildchain working directory
    :rtype: ``pathlib.Path``
    """
    return work_root(root) / name


class WorkDirs:
    """
    Simple class used to hold references to working directories buildchain uses relative to a given root.

    :param root: The root of the working directories tree
    :type root: str
    """

    def __init__(self: "WorkDirs", root: Union[str, os.PathLike[str]]) -> None:
        self.root: pathlib.Path = pathlib.Path(root)
        self.download: pathlib.Path = work_dir("download", self.root)
        self.src: pathlib.Path = work_dir("src", self.root)
        self.logs: pathlib.Path = work_dir("logs", self.root)


def work_dirs(
    root: Optional[Union[str, os.PathLike[str]]] = None,
) -> WorkDirs:
    """
    Returns a WorkDirs instance based on the given root.

    :param root: The desired root of buildchain's working directories
    :type root: str

    :return: A WorkDirs instance based on the given root
    :rtype: ``buildchain.common.WorkDirs``
    """
    return WorkDirs(work_root(root))


def archive_format(archive: Union[str, os.PathLike[str]]) -> str:
    """
    Determine the container format of an archive from its file name.

    :param archive: The archive file name or path
    :type archive: str

    :raises UnsupportedFormatError: If the suffix is not supported

    :return: One of ``gztar``, ``xztar``, ``bztar`` or ``zip``
    :rtype: str
    """
    name = os.path.basename(os.fspath(archive)).lower()
    for suffix, fmt in SUPPORTED_ARCHIVES.items():
        if name.endswith(suffix):
            return fmt
    raise UnsupportedFormatError(archive)


def _extract_zip(to_path: pathlib.Path, archive_path: pathlib.Path) -> None:
    with zipfile.ZipFile(str(archive_path)) as zfp:
        for info in zfp.infolist():
            extracted = zfp.extract(info, str(to_path))
            # zipfile drops permission bits, configure scripts need them.
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                os.chmod(extracted, mode)


def extract_archive(
    to_dir: Union[str, os.PathLike[str]], archive: Union[str, os.PathLike[str]]
) -> None:
    """
    Extract an archive to a specific location.

    The format is determined before the archive is opened, an unsupported
    suffix never results in a partial extraction.

    :param to_dir: The directory to extract to
    :type to_dir: str
    :param archive: The archive to extract
    :type archive: str

    :raises UnsupportedFormatError: If the archive suffix is not supported
    """
    archive_path = pathlib.Path(archive)
    to_path = pathlib.Path(to_dir)
    fmt = archive_format(archive_path)
    log.debug("Found %s archive %s", fmt, archive_path)
    os.makedirs(to_path, exist_ok=True)
    if fmt == "zip":
        _extract_zip(to_path, archive_path)
        return
    with tarfile.open(str(archive_path), mode=_TAR_MODES[fmt]) as tar:
        tar.extractall(str(to_path))


def list_archive(archive: Union[str, os.PathLike[str]]) -> list[str]:
    """
    List the member names of an archive in the order they are stored.

    :param archive: The archive to list
    :type archive: str

    :raises UnsupportedFormatError: If the archive suffix is not supported

    :return: The member names
    :rtype: list
    """
    fmt = archive_format(archive)
    if fmt == "zip":
        with zipfile.ZipFile(os.fspath(archive)) as zfp:
            return zfp.namelist()
    with tarfile.open(os.fspath(archive), mode=_TAR_MODES[fmt]) as tar:
        return tar.getnames()


def get_download_location(url: str, dest: Union[str, os.PathLike[str]]) -> str:
    """
    Get the full path to where the url will be downloaded to.

    :param url: The url to donwload
    :type url: str
    :param dest: Where to download the url to
    :type dest: str

    :return: The path to where the url will be downloaded to
    :rtype: str
    """
    return os.path.join(os.fspath(dest), os.path.basename(url))


def fetch_url(url: str, fp: BinaryIO, timeout: float = 60) -> None:
    """
    Fetch the contents of a url.

    This method will store the contents in the given file like object. There
    is a single attempt, any transport error is fatal.

    :raises FetchError: If the url could not be fetched
    """
    import urllib.error
    import urllib.request

    last = time.time()
    req = urllib.request.Request(url, headers=dict(REQUEST_HEADERS))
    try:
        response = urllib.request.urlopen(req, timeout=timeout)
    except (
        urllib.error.URLError,
        http.client.HTTPException,
        OSError,
        ValueError,
    ) as exc:
        raise FetchError(url, exc) from exc
    log.info("url opened %s", url)
    try:
        total = 0
        block = response.read(1024 * 300)
        while block:
            total += len(block)
            if time.time() - last > 10:
                log.info("%s > %d", url, total)
                last = time.time()
            fp.write(block)
            block = response.read(10240)
    except (http.client.HTTPException, OSError) as exc:
        raise FetchError(url, exc) from exc
    finally:
        response.close()
    log.info("Download complete %s", url)


def download_url(
    url: str,
    dest: Union[str, os.PathLike[str]],
    filename: Optional[str] = None,
    timeout: float = 60,
) -> str:
    """
    Download the url to the provided destination.

    Unless ``filename`` is given this method assumes the last part of the url
    is a filename. (https://foo.com/bar/myfile.tar.xz)

    :param url: The url to download
    :type url: str
    :param dest: Where to download the url to
    :type dest: str
    :param filename: The local file name, defaults to the url's basename
    :type filename: str

    :raises FetchError: If the url was unable to be downloaded

    :return: The path to the downloaded content
    :rtype: str
    """
    if filename:
        local = os.path.join(os.fspath(dest), filename)
    else:
        local = get_download_location(url, dest)
    log.debug("Downloading %s -> %s", url, local)
    try:
        with open(local, "wb") as fout:
            fetch_url(url, fout, timeout)
    except Exception as exc:
        log.error("Unable to download: %s\n%s", url, exc)
        try:
            os.unlink(local)
        except OSError:
            pass
        raise
    log.debug("Finished downloading %s -> %s", url, local)
    return local


def runcmd(*args: Any, **kwargs: Any) -> subprocess.Popen[str]:
    """
    Run a command.

    Run the provided command, raising an Exception when the command finishes
    with a non zero exit code. Arguments are passed through to
    ``subprocess.Popen``. Output is sent to the log line by line.

    :return: The process result
    :rtype: ``subprocess.Popen``

    :raises CommandError: If the command finishes with a non zero exit code
    """
    if not args:
        raise BuildchainException("No command provided to runcmd")
    log.debug("Running command: %s", " ".join(map(str, args[0])))
    kwargs["stdout"] = subprocess.PIPE
    kwargs["stderr"] = subprocess.PIPE
    if "universal_newlines" not in kwargs:
        kwargs["universal_newlines"] = True

    p = subprocess.Popen(*args, **kwargs)
    stdout_stream = p.stdout
    stderr_stream = p.stderr
    if stdout_stream is None or stderr_stream is None:
        p.wait()
        raise BuildchainException("Process pipes are unavailable")
    # Read both stdout and stderr until each one is closed
    sel = selectors.DefaultSelector()
    sel.register(stdout_stream, selectors.EVENT_READ)
    sel.register(stderr_stream, selectors.EVENT_READ)
    open_streams = 2
    while open_streams:
        for key, _ in sel.select():
            stream = cast(IO[str], key.fileobj)
            line = stream.readline()
            if not line:
                sel.unregister(stream)
                open_streams -= 1
                continue
            if line.endswith("\n"):
                line = line[:-1]
            if stream is stdout_stream:
                log.debug(line)
            else:
                log.debug("stderr: %s", line)
    sel.close()
    p.wait()
    stdout_stream.close()
    stderr_stream.close()
    if p.returncode != 0:
        raise CommandError(args[0], p.returncode)
    return p
