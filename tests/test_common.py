# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import multiprocessing
import os
import pathlib
import sys
from typing import BinaryIO
from unittest.mock import patch

import pytest

from buildchain.common import (
    MODULE_DIR,
    BuildchainException,
    CommandError,
    FetchError,
    UnsupportedFormatError,
    archive_format,
    default_jobs,
    default_prefix,
    download_url,
    extract_archive,
    get_download_location,
    list_archive,
    runcmd,
    work_dir,
    work_dirs,
    work_root,
)
from tests.helpers import SourceProject


@pytest.mark.parametrize(
    "name,fmt",
    [
        ("foo-1.0.tar.gz", "gztar"),
        ("foo-1.0.tgz", "gztar"),
        ("foo-1.0.tar.xz", "xztar"),
        ("foo-1.0.tar.bz2", "bztar"),
        ("foo-1.0.zip", "zip"),
        ("FOO-1.0.TAR.GZ", "gztar"),
    ],
)
def test_archive_format(name: str, fmt: str) -> None:
    assert archive_format(name) == fmt


def test_archive_format_unsupported() -> None:
    with pytest.raises(UnsupportedFormatError) as excinfo:
        archive_format("foo-1.0.rar")
    assert ".tar.gz" in str(excinfo.value)


@pytest.mark.parametrize("suffix", [".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".zip"])
def test_extract_archive(tmp_path: pathlib.Path, suffix: str) -> None:
    with SourceProject(tmp_path / "project") as proj:
        proj.add_source("README", "hello\n")
        proj.add_source("util.c", "int x;\n")
        archive = proj.archive(tmp_path / "archives", suffix)
    to_dir = tmp_path / "extracted"
    extract_archive(to_dir, archive)
    assert (to_dir / "libfoo-1.0" / "README").read_text() == "hello\n"
    assert (to_dir / "libfoo-1.0" / "util.c").exists()


@pytest.mark.skipif(sys.platform == "win32", reason="Needs posix permissions")
def test_extract_zip_keeps_mode(tmp_path: pathlib.Path) -> None:
    with SourceProject(tmp_path / "project") as proj:
        proj.add_source("configure", "#!/bin/sh\n", mode=0o755)
        archive = proj.archive(tmp_path / "archives", ".zip")
    to_dir = tmp_path / "extracted"
    extract_archive(to_dir, archive)
    assert os.access(to_dir / "libfoo-1.0" / "configure", os.X_OK)


def test_extract_archive_unsupported(tmp_path: pathlib.Path) -> None:
    archive = tmp_path / "foo-1.0.rar"
    archive.write_bytes(b"Rar!\x1a\x07\x00")
    to_dir = tmp_path / "extracted"
    with pytest.raises(UnsupportedFormatError):
        extract_archive(to_dir, archive)
    assert not to_dir.exists()


def test_list_archive(tmp_path: pathlib.Path) -> None:
    with SourceProject(tmp_path / "project", top="foo-main") as proj:
        proj.add_source("README", "hello\n")
        archive = proj.archive(tmp_path / "archives", ".tar.xz")
    names = list_archive(archive)
    assert names[0] == "foo-main"
    assert "foo-main/README" in names


def test_work_root_when_passed_relative_path() -> None:
    name = "foo"
    assert work_root(name) == pathlib.Path(name).resolve()


def test_work_root_when_nothing_passed(tmp_path: pathlib.Path) -> None:
    assert work_root() == tmp_path / "data"


def test_work_dir_with_root_given(tmp_path: pathlib.Path) -> None:
    ret = work_dir("fakedir", root=tmp_path)
    assert ret == tmp_path / "fakedir"


def test_work_dirs_attributes(tmp_path: pathlib.Path) -> None:
    dirs = work_dirs(tmp_path)
    assert dirs.root == tmp_path
    assert dirs.download == tmp_path / "download"
    assert dirs.src == tmp_path / "src"
    assert dirs.logs == tmp_path / "logs"


def test_default_prefix_from_buildchain_prefix(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PREFIX", str(tmp_path / "other"))
    monkeypatch.setenv("BUILDCHAIN_PREFIX", str(tmp_path / "mine"))
    assert default_prefix() == (tmp_path / "mine").resolve()


def test_default_prefix_from_prefix(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PREFIX", str(tmp_path / "other"))
    assert default_prefix() == (tmp_path / "other").resolve()


def test_default_prefix_fallback() -> None:
    assert default_prefix() == pathlib.Path.home() / "local"


def test_default_jobs_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CPU_COUNT", "3")
    assert default_jobs() == 3


@pytest.mark.parametrize("value", ["", "abc", "0", "-2"])
def test_default_jobs_invalid(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("CPU_COUNT", value)
    assert default_jobs() == multiprocessing.cpu_count()


def test_runcmd_success() -> None:
    ret = runcmd([sys.executable, "-c", "print('foo')"])
    assert ret.returncode == 0


def test_runcmd_fail() -> None:
    with pytest.raises(CommandError) as excinfo:
        runcmd([sys.executable, "-c", "import sys;sys.exit(3)"])
    assert excinfo.value.returncode == 3
    assert isinstance(excinfo.value, BuildchainException)


def test_runcmd_logs_output(caplog: pytest.LogCaptureFixture) -> None:
    code = "import sys;print('to stdout');print('to stderr', file=sys.stderr)"
    with caplog.at_level(logging.DEBUG, logger="buildchain.common"):
        runcmd([sys.executable, "-c", code])
    assert "to stdout" in caplog.messages
    assert "stderr: to stderr" in caplog.messages


def test_runcmd_no_args() -> None:
    with pytest.raises(BuildchainException):
        runcmd()


def test_get_download_location(tmp_path: pathlib.Path) -> None:
    url = "https://test.com/1.0.0/test-1.0.0.tar.xz"
    loc = get_download_location(url, str(tmp_path))
    assert loc == str(tmp_path / "test-1.0.0.tar.xz")


def test_download_url_file_scheme(tmp_path: pathlib.Path) -> None:
    src = tmp_path / "remote" / "foo-1.0.tar.gz"
    src.parent.mkdir()
    src.write_bytes(b"payload")
    dest = tmp_path / "downloads"
    dest.mkdir()
    path = download_url(src.as_uri(), dest)
    assert path == str(dest / "foo-1.0.tar.gz")
    assert pathlib.Path(path).read_bytes() == b"payload"


def test_download_url_filename(tmp_path: pathlib.Path) -> None:
    dest = tmp_path / "downloads"
    dest.mkdir()

    def fake_fetch(url: str, fp: BinaryIO, timeout: float) -> None:
        fp.write(b"data")

    with patch("buildchain.common.fetch_url", side_effect=fake_fetch):
        path = download_url("https://example.com/v1.0.tar.gz", dest, "foo-1.0.tar.gz")
    assert path == str(dest / "foo-1.0.tar.gz")


def test_download_url_failure_cleans_up(tmp_path: pathlib.Path) -> None:
    dest = tmp_path / "downloads"
    dest.mkdir()
    missing = tmp_path / "remote" / "missing.tar.gz"
    with pytest.raises(FetchError) as excinfo:
        download_url(missing.as_uri(), dest)
    assert missing.as_uri() in str(excinfo.value)
    assert not (dest / "missing.tar.gz").exists()


def test_copyright_headers() -> None:
    """Verify all Python source files have the correct copyright header."""
    expected_header = (
        "# Copyright 2022-2025 Broadcom.\n" "# SPDX-License-Identifier: Apache-2.0\n"
    )

    # Find all Python files in buildchain/ and tests/
    root = MODULE_DIR.parent
    python_files: list[pathlib.Path] = []
    for directory in ("buildchain", "tests"):
        dir_path = root / directory
        if dir_path.exists():
            python_files.extend(dir_path.rglob("*.py"))

    # Skip generated and cache files
    python_files = [
        f for f in python_files if "__pycache__" not in f.parts and ".nox" not in f.parts
    ]

    failures = []
    for py_file in python_files:
        with open(py_file, "r", encoding="utf-8") as f:
            content = f.read()

        if not content.startswith(expected_header):
            failures.append(str(py_file.relative_to(root)))

    assert not failures, "Missing copyright header in: " + ", ".join(failures)
