from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from . import globbing
from .errors import ConfigError, PatternError

SCHEMA_PATH = Path(__file__).resolve().parent / "config.schema.json"

_ACTION_GLOB_FIELDS = ("visit", "visit_siblings", "visit_grand_siblings", "exclude")


@dataclass(frozen=True)
class RuleActions:
    """What to visit when a path rule or a regex rule fires for a file."""

    visit: list[str] = field(default_factory=list)
    visit_siblings: list[str] = field(default_factory=list)
    visit_grand_siblings: list[str] = field(default_factory=list)
    visit_imported_python_modules: bool = False
    visit_python_all_submodules_for: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)

    @property
    def parses_python(self) -> bool:
        return self.visit_imported_python_modules or bool(self.visit_python_all_submodules_for)


@dataclass(frozen=True)
class PathRule:
    actions: RuleActions = field(default_factory=RuleActions)
    regex_rules: dict[str, RuleActions] = field(default_factory=dict)


@dataclass(frozen=True)
class Config:
    base_dir: Path
    inputs: list[str] = field(default_factory=list)
    global_deps: list[str] = field(default_factory=list)
    global_exclude: list[str] = field(default_factory=list)
    root_python_packages: list[str] = field(default_factory=list)
    path_rules: dict[str, PathRule] = field(default_factory=dict)


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _actions(raw: dict[str, Any] | None) -> RuleActions:
    raw = raw or {}
    return RuleActions(
        visit=_string_list(raw.get("visit")),
        visit_siblings=_string_list(raw.get("visit_siblings")),
        visit_grand_siblings=_string_list(raw.get("visit_grand_siblings")),
        visit_imported_python_modules=bool(raw.get("visit_imported_python_modules", False)),
        visit_python_all_submodules_for=_string_list(raw.get("visit_python_all_submodules_for")),
        exclude=_string_list(raw.get("exclude")),
    )


def _path_rule(raw: dict[str, Any] | None) -> PathRule:
    raw = raw or {}
    regex_rules = raw.get("regex_rules") or {}
    return PathRule(
        actions=_actions(raw),
        regex_rules={str(k): _actions(v) for k, v in regex_rules.items()},
    )


def _check_patterns(cfg: Config) -> None:
    """Reject malformed globs and regexes before any file is touched."""

    def _glob(pattern: str, where: str) -> None:
        try:
            globbing.validate(pattern)
        except PatternError as exc:
            raise exc.within(where) from exc

    for key in ("inputs", "global_exclude"):
        for pattern in getattr(cfg, key):
            _glob(pattern, key)

    for rule_pattern, rule in cfg.path_rules.items():
        where = f"path_rule '{rule_pattern}'"
        _glob(rule_pattern, where)
        for name in _ACTION_GLOB_FIELDS:
            for pattern in getattr(rule.actions, name):
                _glob(pattern, f"{where}: {name}")
        for regex, actions in rule.regex_rules.items():
            regex_where = f"{where}: regex rule '{regex}'"
            try:
                re.compile(regex)
            except re.error as exc:
                raise PatternError(f"{regex_where}: cannot compile: {exc}") from exc
            for name in _ACTION_GLOB_FIELDS:
                for pattern in getattr(actions, name):
                    _glob(pattern, f"{regex_where}: {name}")


def parse_config(data: bytes, *, config_dir: Path) -> Config:
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to decode config file: {exc}") from exc
    if raw is None:
        raise ConfigError("config file is empty")

    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    try:
        jsonschema.validate(instance=raw, schema=schema)
    except jsonschema.ValidationError as exc:
        location = "$" + "".join(f".{p}" if isinstance(p, str) else f"[{p}]" for p in exc.absolute_path)
        raise ConfigError(f"invalid config at {location}: {exc.message}") from exc

    base_dir = Path(str(raw.get("base_dir") or "."))
    if not base_dir.is_absolute():
        base_dir = config_dir / base_dir

    path_rules = raw.get("path_rules") or {}
    cfg = Config(
        base_dir=base_dir.resolve(),
        inputs=_string_list(raw.get("inputs")),
        global_deps=_string_list(raw.get("global_deps")),
        global_exclude=_string_list(raw.get("global_exclude")),
        root_python_packages=_string_list(raw.get("root_python_packages")),
        path_rules={str(k): _path_rule(v) for k, v in path_rules.items()},
    )
    _check_patterns(cfg)
    return cfg


def load_config(path: Path) -> tuple[Config, bytes]:
    """Load a YAML config; also return the sha256 digest of its raw bytes.

    ``base_dir`` is resolved relative to the directory holding the config.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"failed to read config file '{path}': {exc}") from exc
    cfg = parse_config(data, config_dir=path.parent)
    return cfg, hashlib.sha256(data).digest()
