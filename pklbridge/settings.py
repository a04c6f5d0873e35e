"""Settings that configure code generation from Pkl modules, and how they are found."""

from __future__ import annotations

import os
import posixpath
import urllib.parse
from dataclasses import dataclass
from typing import Any

from .values import pkl_field

PROJECT_FILE = "PklProject"
"""Name of the file that marks a Pkl project directory."""


@dataclass
class GeneratorSettings:
    """Settings to configure code generation for Pkl files."""

    package_mappings: dict[str, str] = pkl_field("packageMappings", default_factory=dict)
    """Mapping of Pkl module names to their respective package name."""

    base_path: str = pkl_field("basePath", default="")
    """The base path that determines where generated sources are written."""

    struct_tags: dict[str, str] = pkl_field("structTags", default_factory=dict)
    """Additional tags to place on all properties."""

    generator_script_path: str = pkl_field("generatorScriptPath", default="")
    """The path to the code generator script."""

    allowed_modules: list[str] = pkl_field("allowedModules", default_factory=list)
    """URI patterns that determine which modules can be loaded and evaluated."""

    allowed_resources: list[str] = pkl_field("allowedResources", default_factory=list)
    """URI patterns that determine which external resources can be read."""

    project_dir: str | None = pkl_field("projectDir", default=None)
    """The project directory; relative paths are resolved against the settings file."""

    cache_dir: str | None = pkl_field("cacheDir", default=None)
    """The cache directory for storing packages."""

    dry_run: bool = pkl_field("dryRun", default=False)
    """Print the names of files that would be generated, but write nothing."""

    uri: str = pkl_field("uri", default="")
    """The URI of the settings module."""


def _resolve_against(base_dir: str, value: str | None) -> str | None:
    if value is None or posixpath.isabs(value):
        return value
    return posixpath.normpath(posixpath.join(base_dir, value))


def load_settings(evaluator: Any, source: Any) -> GeneratorSettings:
    """Evaluate ``source`` into GeneratorSettings.

    Relative ``project_dir`` and ``cache_dir`` values are resolved against the
    directory of the settings module.
    """
    settings = evaluator.evaluate_module(source, GeneratorSettings)
    base_dir = posixpath.dirname(urllib.parse.urlsplit(source.uri).path) or "."
    settings.project_dir = _resolve_against(base_dir, settings.project_dir)
    settings.cache_dir = _resolve_against(base_dir, settings.cache_dir)
    return settings


def _file_exists(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def find_project_dir(
    project_dir_flag: str | None = None, start: str | os.PathLike[str] | None = None
) -> str | None:
    """Find the Pkl project directory.

    An explicit ``project_dir_flag`` wins. Otherwise the directories from
    ``start`` (the working directory by default) upwards are searched for a
    ``PklProject`` file. Returns None when there is none.
    """
    if project_dir_flag:
        return project_dir_flag
    if start is None:
        try:
            start = os.getcwd()
        except OSError:
            return None
    directory = os.fspath(start)
    while True:
        if _file_exists(os.path.join(directory, PROJECT_FILE)):
            return directory
        parent = os.path.dirname(directory)
        if parent == directory:
            return None
        directory = parent