"""agrb user configuration files.

Two optional TOML files supply defaults for the command-line flags:

- global: ``<AGRB_CONFIG_DIR>/config.toml`` (default ``~/.config/agrb``)
- local:  ``<repo root>/.agrb.toml``

Precedence is built-in default < global < local; command-line flags override
all three.  Keys may be written in snake_case or in the camelCase spelling
(``onConflict``, ``pushWithLease``, ...).  Unknown keys and wrongly typed
values are rejected with :class:`~agrb.cli.errors.ConfigError`.
"""
from __future__ import annotations

import logging
import pathlib
import tomllib
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from agrb.cli.errors import ConfigError, ExitCode
from agrb.config import get_settings

logger = logging.getLogger(__name__)

_GLOBAL_FILENAME = "config.toml"
LOCAL_FILENAME = ".agrb.toml"
SCHEMA_VERSION = 1

ConfigSource = Literal["default", "global", "local"]


class AgrbConfig(BaseModel):
    """Effective user preferences."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    allow_empty: bool = False
    linear: bool = False
    continue_on_conflict: bool = False
    remote_target: bool = False
    on_conflict: Literal["pause", "skip", "ours", "theirs"] = "pause"
    dry_run: bool = False
    yes: bool = False
    autostash: bool = False
    push_with_lease: bool = False
    no_backup: bool = False
    schema_version: int = SCHEMA_VERSION


CONFIG_KEYS: tuple[str, ...] = tuple(AgrbConfig.model_fields)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def global_config_path() -> pathlib.Path:
    return get_settings().config_dir.expanduser() / _GLOBAL_FILENAME


def local_config_path(repo_root: pathlib.Path) -> pathlib.Path:
    return repo_root / LOCAL_FILENAME


def _format_errors(path: pathlib.Path, exc: ValidationError) -> str:
    lines = [f"Configuration errors in {path}:"]
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"]) or "(root)"
        lines.append(f"- {loc}: {error['msg']}")
    return "\n".join(lines)


def _read_layer(path: pathlib.Path) -> dict[str, object]:
    """Parse and validate one file; return its keys in snake_case.

    A missing file is an empty layer.  Unreadable or invalid files raise.
    """
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as fh:
            raw = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Configuration errors in {path}:\n- {exc}") from exc
    try:
        layer = AgrbConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(_format_errors(path, exc)) from exc
    # Only keys actually present in the file; defaults must not mask lower layers.
    return layer.model_dump(include=layer.model_fields_set)


def canonical_key(key: str) -> str:
    """Map a snake_case, kebab-case or camelCase key to its field name."""
    for name, field in AgrbConfig.model_fields.items():
        if key in (name, field.alias, name.replace("_", "-")):
            return name
    raise ConfigError(f"Unknown configuration key: {key}", ExitCode.USER_ERROR)


def _dump_toml(data: dict[str, object]) -> str:
    """Serialize a flat TOML mapping of scalars to text, keys in model order."""
    lines: list[str] = []
    for key in CONFIG_KEYS:
        if key not in data:
            continue
        val = data[key]
        if isinstance(val, bool):
            lines.append(f"{key} = {'true' if val else 'false'}")
        elif isinstance(val, str):
            escaped = val.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{key} = "{escaped}"')
        else:
            lines.append(f"{key} = {val!r}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    repo_root: pathlib.Path | None = None,
) -> tuple[AgrbConfig, dict[str, ConfigSource]]:
    """Merge default, global and local layers.

    Returns:
        The effective :class:`AgrbConfig` and, for every key, the layer its
        value came from.

    Raises:
        ConfigError: A file exists but is not valid TOML or fails validation.
    """
    merged: dict[str, object] = {}
    sources: dict[str, ConfigSource] = {key: "default" for key in CONFIG_KEYS}

    layers: list[tuple[ConfigSource, pathlib.Path]] = [("global", global_config_path())]
    if repo_root is not None:
        layers.append(("local", local_config_path(repo_root)))

    for source, path in layers:
        layer = _read_layer(path)
        if layer:
            logger.debug("✅ Loaded %d key(s) from %s config %s", len(layer), source, path)
        for key, value in layer.items():
            merged[key] = value
            sources[key] = source

    return AgrbConfig(**merged), sources


def write_global_config(config: AgrbConfig) -> pathlib.Path:
    """Write *config* to the global file, creating its directory if needed."""
    path = global_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump_toml(config.model_dump()))
    logger.info("✅ Wrote global config %s", path)
    return path


def reset_global_config() -> pathlib.Path:
    """Overwrite the global file with the built-in defaults."""
    return write_global_config(AgrbConfig())


def set_global_value(key: str, raw_value: str) -> AgrbConfig:
    """Validate and persist a single ``key = value`` in the global file.

    *raw_value* is the text typed on the command line; booleans accept
    ``true/false/yes/no/1/0`` (pydantic's lax bool parsing).

    Raises:
        ConfigError: Unknown key, invalid value, or an invalid existing file.
    """
    name = canonical_key(key)
    path = global_config_path()
    current = _read_layer(path)
    current[name] = raw_value
    try:
        updated = AgrbConfig.model_validate(current)
    except ValidationError as exc:
        raise ConfigError(_format_errors(path, exc), ExitCode.USER_ERROR) from exc
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump_toml(updated.model_dump(include=updated.model_fields_set)))
    logger.info("✅ Set %s = %r in %s", name, getattr(updated, name), path)
    return updated
