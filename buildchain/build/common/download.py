# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Download utility class for fetching package archives.
"""
from __future__ import annotations

import logging
import os
import pathlib
from typing import Optional, Union

from buildchain.common import download_url

# Type alias for path-like objects
PathLike = Union[str, os.PathLike[str]]

log = logging.getLogger(__name__)


class Download:
    """
    A utility that holds information about content to be downloaded.

    :param name: The name of the download
    :type name: str
    :param url: The url of the download
    :type url: str
    :param archive: The local file name of the download, defaults to the url's basename
    :type archive: str
    :param destination: The directory to download the file to
    :type destination: str
    """

    def __init__(
        self,
        name: str,
        url: str,
        archive: str = "",
        destination: PathLike = "",
    ) -> None:
        self.name = name
        self.url = url
        self.archive = archive
        self._destination: pathlib.Path = pathlib.Path()
        if destination:
            self._destination = pathlib.Path(destination)

    @property
    def destination(self) -> pathlib.Path:
        """Get the destination directory path."""
        return self._destination

    @destination.setter
    def destination(self, value: Optional[PathLike]) -> None:
        """Set the destination directory path."""
        if value:
            self._destination = pathlib.Path(value)
        else:
            self._destination = pathlib.Path()

    @property
    def filename(self) -> str:
        """Get the local file name of the download."""
        if self.archive:
            return os.path.basename(self.archive)
        _, name = self.url.rsplit("/", 1)
        return name

    @property
    def filepath(self) -> pathlib.Path:
        """Get the full file path where the download will be saved."""
        return self.destination / self.filename

    def fetch_file(self) -> str:
        """
        Download the file.

        :raises FetchError: If the download failed

        :return: The path to the downloaded content
        :rtype: str
        """
        return download_url(self.url, self.destination, self.filename)

    def exists(self) -> bool:
        """
        True when the artifact already exists on disk.

        :return: True when the artifact already exists on disk
        :rtype: bool
        """
        return self.filepath.exists()

    def __call__(self, force_download: bool = False) -> bool:
        """
        Make sure the archive exists locally.

        An existing file is used as is, its contents are not checked.

        :param force_download: Download even if the file already exists
        :type force_download: bool

        :raises FetchError: If the download failed

        :return: Whether or not the file was downloaded
        :rtype: bool
        """
        os.makedirs(self.filepath.parent, exist_ok=True)
        if self.exists() and not force_download:
            log.info("Found cached %s", self.filepath.name)
            return False
        log.info("Downloading %s from %s ...", self.filepath.name, self.url)
        self.fetch_file()
        return True
