# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
import io
import pathlib
import shutil
import tarfile
import textwrap
import zipfile

# Records the prefix in config.status for the fake make below to read. Like a
# real configure it fails when a --with-*= path does not exist.
CONFIGURE = textwrap.dedent(
    """\
    #!/bin/sh
    prefix=/usr/local
    for arg in "$@"; do
      case "$arg" in
        --prefix=*) prefix="${arg#--prefix=}" ;;
        --with-*=*)
          dep="${arg#*=}"
          if [ ! -e "$dep" ]; then
            echo "configure: error: $dep not found" >&2
            exit 1
          fi
          ;;
      esac
    done
    echo "$@" > configure.args
    printf 'prefix=%s\\nname=@NAME@\\n' "$prefix" > config.status
    """
)

FAILING_CONFIGURE = "#!/bin/sh\necho 'configure: error: no acceptable C compiler' >&2\nexit 1\n"

# Stands in for make so the tests do not need a toolchain. ``make install``
# drops an executable named after the package into $prefix/bin.
FAKE_MAKE = textwrap.dedent(
    """\
    #!/bin/sh
    . ./config.status
    for arg in "$@"; do
      case "$arg" in
        install)
          mkdir -p "$prefix/bin"
          printf '#!/bin/sh\\necho %s\\n' "$name" > "$prefix/bin/$name"
          chmod 755 "$prefix/bin/$name"
          ;;
      esac
    done
    echo "make $*" >> make.log
    """
)


class BaseProject:
    def __init__(self, root_dir):
        self.root_dir = root_dir

    def make_project(self):
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def destroy_project(self):
        # Make sure the project is torn down properly
        if pathlib.Path(self.root_dir).exists():
            shutil.rmtree(self.root_dir, ignore_errors=True)

    def add_file(self, name, contents, *relpath, binary=False, mode=None):
        file_path = (self.root_dir / pathlib.Path(*relpath) / name).resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if binary:
            file_path.write_bytes(contents)
        else:
            file_path.write_text(contents)
        if mode is not None:
            file_path.chmod(mode)
        return file_path

    def __enter__(self):
        self.make_project()
        return self

    def __exit__(self, *exc):
        self.destroy_project()


class SourceProject(BaseProject):
    """
    A fake source tree that can be packed into any supported archive format.
    """

    def __init__(self, root_dir, name="libfoo", version="1.0", top=None):
        super().__init__(root_dir)
        self.name = name
        self.version = version
        self.top = top if top is not None else f"{name}-{version}"

    def add_source(self, name, contents, mode=None):
        return self.add_file(name, contents, self.top, mode=mode)

    def add_configure_project(self, failing=False):
        """
        Add a configure script to the tree.
        """
        script = CONFIGURE.replace("@NAME@", self.name)
        if failing:
            script = FAILING_CONFIGURE
        self.add_source("configure", script, mode=0o755)

    def archive(self, dest, suffix=".tar.gz"):
        """
        Pack the tree into dest, returning the archive path.
        """
        dest = pathlib.Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        path = dest / f"{self.name}-{self.version}{suffix}"
        tree = self.root_dir / self.top
        if suffix == ".zip":
            with zipfile.ZipFile(path, "w") as zfp:
                for item in sorted(tree.rglob("*")):
                    zfp.write(item, item.relative_to(self.root_dir).as_posix())
            return path
        modes = {
            ".tar.gz": "w:gz",
            ".tgz": "w:gz",
            ".tar.xz": "w:xz",
            ".tar.bz2": "w:bz2",
        }
        with tarfile.open(path, modes[suffix]) as tar:
            tar.add(tree, self.top)
        return path


def make_tar(path, members, mode="w:gz"):
    """
    Write a tarball holding empty files with the given member names.
    """
    with tarfile.open(path, mode) as tar:
        for member in members:
            info = tarfile.TarInfo(member)
            if member.endswith("/"):
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = 0
                tar.addfile(info, io.BytesIO(b""))
    return path


def install_fake_make(bin_dir):
    """
    Write the fake make into bin_dir, returning its path.
    """
    bin_dir = pathlib.Path(bin_dir)
    bin_dir.mkdir(parents=True, exist_ok=True)
    path = bin_dir / "make"
    path.write_text(FAKE_MAKE)
    path.chmod(0o755)
    return path
