# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build process common methods.

The pipeline is split into focused submodules, the public APIs are
re-exported here.
"""
from __future__ import annotations

from .builders import (
    STRATEGIES,
    build_autotools,
    build_cmake,
    build_configure,
    build_custom,
    build_make_prefix,
    get_strategy,
    run_hook,
)

from .download import Download

from .layout import resolve_source_dir

from .table import (
    Package,
    Table,
    bundled_tables,
    expand_template,
    load_table,
    parse_json,
    parse_pipe,
)

from .builder import (
    BUILT,
    SKIPPED,
    Builder,
    Dirs,
)


__all__ = [
    # Builder classes
    "Builder",
    "Dirs",
    "BUILT",
    "SKIPPED",
    # Fetching and source layout
    "Download",
    "resolve_source_dir",
    # Package tables
    "Package",
    "Table",
    "bundled_tables",
    "expand_template",
    "load_table",
    "parse_json",
    "parse_pipe",
    # Builders (build methods)
    "STRATEGIES",
    "build_autotools",
    "build_cmake",
    "build_configure",
    "build_custom",
    "build_make_prefix",
    "get_strategy",
    "run_hook",
]
