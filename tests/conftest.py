from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

import depdigest.cli  # noqa: F401  (creates the package loggers)
from depdigest.config import Config, PathRule, RuleActions
from depdigest.util import JsonLogFormatter

PRODUCT_MODULE_PREFIXES = ("depdigest",)
LOGGER_NAMES = ("depdigest.cli", "depdigest.graph", "depdigest.visitor")


def _canonical_env_hash(env: dict[str, str]) -> str:
    payload = json.dumps(sorted(env.items()), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@pytest.fixture(autouse=True)
def isolate_runtime_state() -> Iterator[None]:
    modules_before = set(sys.modules.keys())
    environ_before = dict(os.environ)
    environ_before_hash = _canonical_env_hash(environ_before)

    yield

    new_modules = set(sys.modules.keys()) - modules_before
    for module_name in new_modules:
        if module_name.startswith(PRODUCT_MODULE_PREFIXES):
            sys.modules.pop(module_name, None)

    for key in list(os.environ.keys()):
        if key not in environ_before:
            os.environ.pop(key, None)
    for key, value in environ_before.items():
        os.environ[key] = value

    assert _canonical_env_hash(dict(os.environ)) == environ_before_hash


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative path: text}`` under a fresh root and return the root."""

    def _make(files: dict[str, str]) -> Path:
        root = tmp_path / "repo"
        root.mkdir(exist_ok=True)
        for rel, text in files.items():
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        return root

    return _make


def python_config(root: Path, **overrides) -> Config:
    """Config with the usual pytest-style rules, tweakable per test."""
    values = dict(
        base_dir=root,
        inputs=["tests/**/test_*.py"],
        global_deps=[],
        global_exclude=["**/*.pyc"],
        root_python_packages=["pkg", "tests"],
        path_rules={
            "tests/**/test_*.py": PathRule(
                actions=RuleActions(visit_grand_siblings=["conftest.py", "__init__.py"]),
            ),
            "**/*.py": PathRule(
                actions=RuleActions(visit_imported_python_modules=True),
            ),
        },
    )
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def log_stream(monkeypatch: pytest.MonkeyPatch) -> io.StringIO:
    """Redirect the package's JSON log handlers into a buffer."""
    stream = io.StringIO()
    for name in LOGGER_NAMES:
        for handler in logging.getLogger(name).handlers:
            # Skip handlers pytest attaches to non-propagating loggers.
            if isinstance(handler.formatter, JsonLogFormatter):
                monkeypatch.setattr(handler, "stream", stream)
    return stream
