"""Configuration loading and validation logic."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePath, PurePosixPath
from typing import Any, Callable, Dict, List, Mapping, Sequence, Union
import io
import json
import os
import tomllib

import yaml

from .errors import ConfigError


ConfigLoader = Callable[[Any], Any]

_FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}

_PARSE_ERRORS = (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError)

DEFAULT_IMAGE = "jonah-build-image"
DEFAULT_WORK_DIR = "/tmp/jonah"
DEFAULT_ENGINE = "docker"


def _decode_document(data: bytes | str, suffix: str, *, source: str) -> Mapping[str, Any]:
    suffix = suffix.lower()
    loader = _FILE_LOADERS.get(suffix)
    if loader is None:
        raise ConfigError(f"Unsupported configuration file extension: {suffix or '<none>'} ({source})")
    if isinstance(data, str):
        data = data.encode("utf-8")
    stream: Any = io.BytesIO(data)
    if suffix != ".toml":
        stream = io.TextIOWrapper(stream, encoding="utf-8")
    try:
        document = loader(stream)
    except _PARSE_ERRORS as exc:
        raise ConfigError(f"Unable to parse '{source}': {exc}") from exc
    if not isinstance(document, Mapping):
        raise ConfigError(f"Configuration file '{source}' must contain a mapping at the root")
    return document


def _load_config_file(path: Path) -> Mapping[str, Any]:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file '{path}': {exc.strerror or exc}") from exc
    return _decode_document(data, path.suffix, source=str(path))


def _require_string(data: Mapping[str, Any], key: str, *, where: str) -> str:
    value = data.get(key)
    if value is None:
        raise ConfigError(f"{where}.{key} is required")
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string")
    if not value.strip():
        raise ConfigError(f"{where}.{key} cannot be empty")
    return value


def _optional_string(data: Mapping[str, Any], key: str, *, where: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string")
    return value.strip() or None


def _require_table_list(data: Mapping[str, Any], key: str, *, where: str) -> List[Mapping[str, Any]]:
    if key not in data:
        raise ConfigError(f"{where}.{key} is required")
    value = data[key]
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ConfigError(f"{where}.{key} must be an array of tables")
    tables: List[Mapping[str, Any]] = []
    for index, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise ConfigError(f"{where}.{key}[{index}] must be a table")
        tables.append(entry)
    return tables


def _normalize_string_list(value: Any, *, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    if isinstance(value, Sequence):
        result: List[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(f"{field_name} entries must be strings")
            text = item.strip()
            if text:
                result.append(text)
        return result
    raise ConfigError(f"{field_name} must be a string or sequence of strings")


@dataclass(frozen=True, slots=True)
class Export:
    """One artifact to copy out of the finished container."""

    container_path: str
    host_name: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, where: str) -> "Export":
        return cls(
            container_path=_require_string(data, "path", where=where),
            host_name=_require_string(data, "name", where=where),
        )


@dataclass(frozen=True, slots=True)
class ProjectDescriptor:
    container_file: str
    exports: List[Export] = field(default_factory=list)
    host_dirs: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProjectDescriptor":
        container_file = _require_string(data, "docker", where="project")
        exports = [
            Export.from_mapping(entry, where=f"exports[{index}]")
            for index, entry in enumerate(_require_table_list(data, "exports", where="project"))
        ]
        host_dirs = _normalize_string_list(data.get("create_host_dirs"), field_name="project.create_host_dirs")
        return cls(container_file=container_file, exports=exports, host_dirs=host_dirs)


@dataclass(frozen=True, slots=True)
class GitRelative:
    """Repository addressed relative to the collection's ``git_base``."""

    rel_path: str
    build_file: str
    out_path: str


@dataclass(frozen=True, slots=True)
class GitUrl:
    """Repository addressed by a fully-qualified remote URL."""

    url: str
    build_file: str
    out_path: str


@dataclass(frozen=True, slots=True)
class LocalPath:
    """Descriptor already present on the local filesystem."""

    build_file: str
    out_path: str


ProjectReference = Union[GitRelative, GitUrl, LocalPath]


def _require_relative_path(data: Mapping[str, Any], key: str, *, where: str) -> str:
    value = _require_string(data, key, where=where)
    path = PurePath(value)
    if path.is_absolute() or PurePosixPath(value).is_absolute() or ".." in path.parts:
        raise ConfigError(f"{where}.{key} must be a relative path without '..' segments")
    return value


def parse_reference(data: Mapping[str, Any], *, where: str = "project") -> ProjectReference:
    has_rel = data.get("git_rel") is not None
    has_url = data.get("git_url") is not None
    if has_rel and has_url:
        raise ConfigError(f"{where}: a project can have either `git_rel` or `git_url`, but not both")
    build_file = _require_string(data, "build_file", where=where)
    out_path = _require_relative_path(data, "out_path", where=where)

    if has_rel:
        rel_path = _require_string(data, "git_rel", where=where)
        return GitRelative(rel_path=rel_path, build_file=build_file, out_path=out_path)
    if has_url:
        url = _require_string(data, "git_url", where=where)
        return GitUrl(url=url, build_file=build_file, out_path=out_path)
    return LocalPath(build_file=build_file, out_path=out_path)


def describe_reference(reference: ProjectReference) -> str:
    if isinstance(reference, GitRelative):
        return f"{reference.rel_path} ({reference.build_file})"
    if isinstance(reference, GitUrl):
        return f"{reference.url} ({reference.build_file})"
    if isinstance(reference, LocalPath):
        return reference.build_file
    raise TypeError(f"Unknown project reference: {reference!r}")


@dataclass(frozen=True, slots=True)
class CollectionDescriptor:
    git_base: str | None
    projects: List[ProjectReference] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CollectionDescriptor":
        git_base = _optional_string(data, "git_base", where="collection")
        projects = [
            parse_reference(entry, where=f"projects[{index}]")
            for index, entry in enumerate(_require_table_list(data, "projects", where="collection"))
        ]
        return cls(git_base=git_base, projects=projects)


Descriptor = Union[ProjectDescriptor, CollectionDescriptor]


def validate(collection: CollectionDescriptor) -> None:
    """Reject relative git references that have no ``git_base`` to resolve against."""
    if collection.git_base is not None:
        return
    for reference in collection.projects:
        if isinstance(reference, GitRelative):
            raise ConfigError(
                f"the relative git `{reference.rel_path}` could not be resolved: set the `git_base` url"
            )


def parse_project(data: bytes | str, *, suffix: str = ".toml", source: str = "<project>") -> ProjectDescriptor:
    return ProjectDescriptor.from_mapping(_decode_document(data, suffix, source=source))


def parse_collection(data: bytes | str, *, suffix: str = ".toml", source: str = "<collection>") -> CollectionDescriptor:
    return CollectionDescriptor.from_mapping(_decode_document(data, suffix, source=source))


def _with_source(path: Path, parse: Callable[[Mapping[str, Any]], Any], document: Mapping[str, Any]) -> Any:
    try:
        return parse(document)
    except ConfigError as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def load_project(path: Path) -> ProjectDescriptor:
    return _with_source(path, ProjectDescriptor.from_mapping, _load_config_file(path))


def load_collection(path: Path) -> CollectionDescriptor:
    return _with_source(path, CollectionDescriptor.from_mapping, _load_config_file(path))


def load_descriptor(path: Path) -> Descriptor:
    document = _load_config_file(path)
    if "projects" in document:
        return _with_source(path, CollectionDescriptor.from_mapping, document)
    return _with_source(path, ProjectDescriptor.from_mapping, document)


@dataclass(slots=True)
class GlobalConfig:
    image: str = DEFAULT_IMAGE
    container: str | None = None
    work_dir: str = DEFAULT_WORK_DIR
    engine: str = DEFAULT_ENGINE
    echo_commands: bool = True
    log_level: str = "info"
    log_file: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        global_section = data.get("global", {}) if isinstance(data, Mapping) else {}
        if not isinstance(global_section, Mapping):
            raise ConfigError("[global] must be a table")
        echo = global_section.get("echo_commands", True)
        if not isinstance(echo, bool):
            raise ConfigError("global.echo_commands must be a boolean")
        return cls(
            image=str(global_section.get("image") or DEFAULT_IMAGE),
            container=str(global_section["container"]) if global_section.get("container") else None,
            work_dir=str(global_section.get("work_dir") or DEFAULT_WORK_DIR),
            engine=str(global_section.get("engine") or DEFAULT_ENGINE),
            echo_commands=echo,
            log_level=str(global_section.get("log_level", "info")),
            log_file=str(global_section["log_file"]) if global_section.get("log_file") else None,
        )


def default_global_config_path(environ: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if environ is None else environ
    explicit = environ.get("JONAH_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    base = environ.get("XDG_CONFIG_HOME") or str(Path("~/.config").expanduser())
    return Path(base) / "jonah" / "config.toml"


def load_global_config(path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> GlobalConfig:
    """Load user defaults; an absent default file means built-in defaults.

    An explicitly requested file (``path`` or ``$JONAH_CONFIG``) must exist.
    """
    explicit = path is not None or bool((os.environ if environ is None else environ).get("JONAH_CONFIG"))
    config_path = path if path is not None else default_global_config_path(environ)
    if not config_path.exists() and not explicit:
        return GlobalConfig()
    return GlobalConfig.from_mapping(_load_config_file(config_path))
