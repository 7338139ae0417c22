# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import logging
import pathlib

import pytest

import buildchain.common
from buildchain.build.common import Package, Table

log = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def isolate_environ(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    """
    Keep the caller's prefix and data settings out of the tests.
    """
    for name in ("BUILDCHAIN_PREFIX", "PREFIX", "CPU_COUNT", "MIRROR_GNU"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(buildchain.common, "DATA_DIR", tmp_path / "data")


@pytest.fixture
def prefix(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "prefix"
    path.mkdir()
    return path


@pytest.fixture
def root(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "work"


@pytest.fixture
def package() -> Package:
    return Package(
        name="libfoo",
        version="1.0",
        url="https://example.com/libfoo-${VERSION}.tar.gz",
        marker="${PREFIX}/lib/libfoo.so",
    )


@pytest.fixture
def table(package: Package) -> Table:
    return Table(packages=(package,))
