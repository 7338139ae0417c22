# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Package descriptors and the tables that hold them.
"""
from __future__ import annotations

import json
import logging
import os
import pathlib
import string
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

from buildchain.common import MODULE_DIR, ConfigurationError

# Type alias for path-like objects
PathLike = Union[str, os.PathLike[str]]

log = logging.getLogger(__name__)

TABLES_DIR = MODULE_DIR / "tables"

DEFAULT_METHOD = "autotools"

# Column order of the pipe delimited table format.
FIELDS = (
    "name",
    "version",
    "archive",
    "url",
    "marker",
    "method",
    "configure_args",
    "pre_hook",
    "post_hook",
)

# Variables provided by the orchestrator, tables can not redefine these.
BUILTIN_VARIABLES = ("PREFIX", "JOBS", "SRC", "DOWNLOADS", "NAME", "VERSION")


def expand_template(
    text: str, variables: Mapping[str, str], strict: bool = True
) -> str:
    """
    Substitute ``${VAR}`` references in text.

    :param text: The template
    :type text: str
    :param variables: The values of the known variables
    :type variables: dict
    :param strict: Raise on unknown variables instead of leaving them alone
    :type strict: bool

    :raises ConfigurationError: If strict and text references an unknown variable

    :return: The expanded text
    :rtype: str
    """
    if not strict:
        # Keep $$ for the shell, safe_substitute would collapse it to $.
        return string.Template(text.replace("$$", "$$$$")).safe_substitute(variables)
    tpl = string.Template(text)
    try:
        return tpl.substitute(variables)
    except KeyError as exc:
        raise ConfigurationError(
            f"Unknown variable {exc.args[0]} in {text!r}"
        ) from exc
    except ValueError as exc:
        raise ConfigurationError(f"Invalid template {text!r}: {exc}") from exc


class Package(NamedTuple):
    """
    Describes how to fetch, locate and build one package.
    """

    name: str
    version: str
    url: str
    archive: str = ""
    marker: str = ""
    method: str = DEFAULT_METHOD
    configure_args: str = ""
    pre_hook: str = ""
    post_hook: str = ""

    @property
    def archive_name(self) -> str:
        """The local file name of the downloaded archive."""
        if self.archive:
            return os.path.basename(self.archive)
        return os.path.basename(self.url)

    def expand(self, variables: Mapping[str, str]) -> "Package":
        """
        Return a copy with all templates substituted.

        ``NAME`` and ``VERSION`` are added to the given variables. Shell
        commands, the hooks and the command of a custom package, keep
        references to unknown variables for the shell to resolve.
        """
        version = expand_template(self.version, variables)
        scope = dict(variables)
        scope["NAME"] = self.name
        scope["VERSION"] = version
        shell_args = self.method == "custom"
        return self._replace(
            version=version,
            url=expand_template(self.url, scope),
            archive=expand_template(self.archive, scope),
            marker=expand_template(self.marker, scope),
            configure_args=expand_template(
                self.configure_args, scope, strict=not shell_args
            ),
            pre_hook=expand_template(self.pre_hook, scope, strict=False),
            post_hook=expand_template(self.post_hook, scope, strict=False),
        )


class Table(NamedTuple):
    """
    An ordered collection of packages and the settings shared by them.
    """

    packages: Tuple[Package, ...]
    variables: Mapping[str, str] = {}
    environment: Mapping[str, str] = {}
    verify: Tuple[str, ...] = ()

    def names(self) -> List[str]:
        """The package names in build order."""
        return [_.name for _ in self.packages]

    def resolve_variables(
        self,
        builtins: Mapping[str, str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """
        The template variables for this table.

        Table variables can be overridden by an environment variable of the
        same name and can reference the builtin variables.
        """
        if environ is None:
            environ = os.environ
        variables = dict(builtins)
        for name, value in self.variables.items():
            if name in BUILTIN_VARIABLES:
                raise ConfigurationError(f"Variable {name} can not be redefined")
            if name in environ:
                log.debug("Variable %s overridden from the environment", name)
                value = environ[name]
            variables[name] = expand_template(value, builtins)
        return variables

    def verify_paths(self, variables: Mapping[str, str]) -> List[str]:
        """
        The artifacts checked after a build.

        Explicit ``verify`` entries are expanded with the table variables.
        Without them each package marker is checked, expanded in the scope of
        its package so ``${NAME}`` and ``${VERSION}`` resolve.
        """
        if self.verify:
            return [expand_template(_, variables) for _ in self.verify]
        return [
            _.expand(variables).marker for _ in self.packages if _.marker
        ]


def _package(data: Mapping[str, Any], where: str) -> Package:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{where}: package entries must be objects")
    unknown = set(data) - set(FIELDS)
    if unknown:
        raise ConfigurationError(
            f"{where}: unknown fields {', '.join(sorted(unknown))}"
        )
    for required in ("name", "url"):
        if not data.get(required):
            raise ConfigurationError(f"{where}: missing required field {required}")
    values = {}
    for field in FIELDS:
        value = data.get(field)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ConfigurationError(f"{where}: field {field} must be a string")
        values[field] = value
    values.setdefault("version", "")
    return Package(**values)


def _string_map(data: Any, key: str, where: str) -> Dict[str, str]:
    value = data.get(key, {})
    if not isinstance(value, Mapping) or not all(
        isinstance(_, str) for _ in value.values()
    ):
        raise ConfigurationError(f"{where}: {key} must map names to strings")
    return dict(value)


def parse_json(text: str, where: str = "<table>") -> Table:
    """
    Parse a table in the json format.

    :param text: The json document
    :type text: str
    :param where: The name used in error messages
    :type where: str

    :return: The table
    :rtype: ``Table``
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{where}: invalid json: {exc}") from exc
    if isinstance(data, list):
        data = {"packages": data}
    if not isinstance(data, Mapping) or not isinstance(data.get("packages"), list):
        raise ConfigurationError(f"{where}: expected a list of packages")
    packages = tuple(
        _package(entry, f"{where}: package {idx}")
        for idx, entry in enumerate(data["packages"])
    )
    verify = data.get("verify", [])
    if not isinstance(verify, list) or not all(isinstance(_, str) for _ in verify):
        raise ConfigurationError(f"{where}: verify must be a list of paths")
    table = Table(
        packages=packages,
        variables=_string_map(data, "variables", where),
        environment=_string_map(data, "environment", where),
        verify=tuple(verify),
    )
    _check_unique(table, where)
    return table


def parse_pipe(text: str, where: str = "<table>") -> Table:
    """
    Parse a table in the pipe delimited format.

    Each line holds ``name|version|archive|url|marker|method|configure_args|pre_hook|post_hook``.
    Blank lines and lines starting with ``#`` are ignored, missing trailing
    fields are empty.

    :param text: The table text
    :type text: str
    :param where: The name used in error messages
    :type where: str

    :return: The table
    :rtype: ``Table``
    """
    packages = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        columns = line.split("|")
        if len(columns) > len(FIELDS):
            raise ConfigurationError(
                f"{where}:{lineno}: expected at most {len(FIELDS)} fields, "
                f"found {len(columns)}"
            )
        entry = dict(zip(FIELDS, (_.strip() for _ in columns)))
        packages.append(_package(entry, f"{where}:{lineno}"))
    table = Table(packages=tuple(packages))
    _check_unique(table, where)
    return table


def _check_unique(table: Table, where: str) -> None:
    seen = set()
    for name in table.names():
        if name in seen:
            raise ConfigurationError(f"{where}: duplicate package {name}")
        seen.add(name)


def bundled_tables() -> List[str]:
    """
    The names of the tables shipped with buildchain.
    """
    return sorted(_.stem for _ in TABLES_DIR.glob("*.json"))


def load_table(source: PathLike) -> Table:
    """
    Load a package table.

    :param source: A path to a json or pipe delimited table, or the name of a bundled table
    :type source: str

    :raises ConfigurationError: If the table can not be found or parsed

    :return: The table
    :rtype: ``Table``
    """
    path = pathlib.Path(source)
    if not path.exists():
        bundled = TABLES_DIR / f"{source}.json"
        if not bundled.exists():
            raise ConfigurationError(
                f"Table {source} not found, bundled tables are: "
                f"{', '.join(bundled_tables())}"
            )
        path = bundled
    log.debug("Loading table %s", path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return parse_json(text, str(path))
    return parse_pipe(text, str(path))
