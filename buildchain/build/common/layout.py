# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Locate the source tree produced by extracting an archive.

Archives do not always unpack into ``{name}-{version}``. GitHub tag archives
use ``{repo}-{tag}`` and forks use whatever they like, so the directory is
looked up in three tiers:

1. ``{name}-{version}`` if it exists.
2. The first path segment of the first member listed in the archive.
3. Directories matching ``{name}*``, ``{name}-{version}*`` or ``*{name}*``.
"""
from __future__ import annotations

import glob
import logging
import os
import pathlib
import tarfile
import zipfile
from typing import Optional, Union

from buildchain.common import (
    BuildchainException,
    SourceDirectoryNotFoundError,
    list_archive,
)

# Type alias for path-like objects
PathLike = Union[str, os.PathLike[str]]

log = logging.getLogger(__name__)


def top_level_dir(archive: PathLike) -> Optional[str]:
    """
    The first path segment of the first member of an archive.

    :param archive: The archive to inspect
    :type archive: str

    :return: The segment, or None when the archive can not be listed or is empty
    :rtype: str
    """
    try:
        names = list_archive(archive)
    except (
        BuildchainException,
        OSError,
        EOFError,
        tarfile.TarError,
        zipfile.BadZipFile,
    ) as exc:
        log.debug("Unable to list %s: %s", archive, exc)
        return None
    # Members like "./" carry no directory name, use the first one that does.
    for name in names:
        for segment in name.replace("\\", "/").split("/"):
            if segment and segment != ".":
                return segment
    return None


def glob_source_dir(name: str, version: str, root: PathLike) -> Optional[pathlib.Path]:
    """
    The first directory in root matching one of the name derived patterns.
    """
    root = pathlib.Path(root)
    name = glob.escape(name)
    patterns = [f"{name}*", f"{name}-{glob.escape(version)}*", f"*{name}*"]
    for pattern in patterns:
        for match in sorted(glob.glob(pattern, root_dir=root)):
            if (root / match).is_dir():
                return root / match
    return None


def resolve_source_dir(
    name: str, version: str, archive: PathLike, root: PathLike
) -> pathlib.Path:
    """
    Determine the directory holding an extracted source tree.

    :param name: The package name
    :type name: str
    :param version: The package version
    :type version: str
    :param archive: The archive the tree was extracted from
    :type archive: str
    :param root: The directory the archive was extracted into
    :type root: str

    :raises SourceDirectoryNotFoundError: If no directory could be found

    :return: The source directory
    :rtype: ``pathlib.Path``
    """
    root = pathlib.Path(root)
    guess = root / f"{name}-{version}"
    if guess.is_dir():
        log.debug("Source directory %s matches name and version", guess)
        return guess

    segment = top_level_dir(archive)
    if segment:
        candidate = root / segment
        if candidate.is_dir():
            log.debug("Source directory %s found in archive listing", candidate)
            return candidate

    match = glob_source_dir(name, version, root)
    if match is not None:
        log.debug("Source directory %s found by pattern", match)
        return match

    raise SourceDirectoryNotFoundError(archive)
