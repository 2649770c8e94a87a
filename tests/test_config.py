from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from depdigest.config import RuleActions, load_config
from depdigest.errors import ConfigError, PatternError

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "depdigest.example.yaml"


def _write(tmp_path: Path, text: str) -> Path:
    cfg_path = tmp_path / "cfg" / "depdigest.yaml"
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(text, encoding="utf-8")
    return cfg_path


def test_example_config_loads() -> None:
    cfg, digest = load_config(EXAMPLE_CONFIG)

    assert cfg.base_dir == EXAMPLE_CONFIG.parent.parent.resolve()
    assert cfg.inputs == ["tests/**/test_*.py"]
    assert cfg.global_deps == ["poetry.lock", "pyproject.toml", "pytest.ini"]
    assert cfg.root_python_packages == ["frobnicator", "tests"]
    assert digest == hashlib.sha256(EXAMPLE_CONFIG.read_bytes()).digest()

    py_rule = cfg.path_rules["**/*.py"]
    assert py_rule.actions.visit_imported_python_modules is True
    assert py_rule.actions.visit_grand_siblings == ["__init__.py"]
    sub_rule = py_rule.regex_rules["(?m:^ *import_all_submodules\\(([A-Za-z_][A-Za-z0-9_.]*)\\))"]
    assert sub_rule.visit_python_all_submodules_for == ["$1"]
    assert cfg.path_rules["frobnicator/native/*.c"].actions.visit_siblings == ["**/*.h"]


def test_scalar_and_list_fields_normalize_to_lists(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path,
        """
base_dir: repo
inputs: "a/*.py"
global_deps: ["x.lock", "y.toml"]
path_rules:
  "a/*.py":
    visit: "shared/*.txt"
    regex_rules:
      "load\\\\('([^']+)'\\\\)":
        visit_siblings: $1
""",
    )
    cfg, _ = load_config(cfg_path)

    assert cfg.base_dir == (tmp_path / "cfg" / "repo").resolve()
    assert cfg.inputs == ["a/*.py"]
    assert cfg.global_deps == ["x.lock", "y.toml"]
    assert cfg.global_exclude == []
    rule = cfg.path_rules["a/*.py"]
    assert rule.actions == RuleActions(visit=["shared/*.txt"])
    assert rule.regex_rules["load\\('([^']+)'\\)"].visit_siblings == ["$1"]


def test_base_dir_defaults_to_config_directory(tmp_path: Path) -> None:
    cfg, _ = load_config(_write(tmp_path, "inputs: []\n"))
    assert cfg.base_dir == (tmp_path / "cfg").resolve()
    assert cfg.path_rules == {}


@pytest.mark.parametrize(
    "text",
    [
        "inputs: x\nsurprise: 1\n",
        "path_rules:\n  '*.py':\n    visits: x\n",
        "path_rules:\n  '*.py':\n    regex_rules:\n      'x':\n        regex_rules: {}\n",
        "inputs: 3\n",
        "path_rules:\n  '*.py':\n    visit_imported_python_modules: maybe\n",
    ],
)
def test_unknown_or_mistyped_fields_are_rejected(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, text))


def test_malformed_yaml_and_empty_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="failed to decode"):
        load_config(_write(tmp_path, "inputs: [unclosed\n"))
    with pytest.raises(ConfigError, match="empty"):
        load_config(_write(tmp_path, ""))


def test_global_deps_are_literal_paths(tmp_path: Path) -> None:
    cfg, _ = load_config(_write(tmp_path, "global_deps: ['../shared.lock', 'weird{name.txt']\n"))

    assert cfg.global_deps == ["../shared.lock", "weird{name.txt"]


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="failed to read"):
        load_config(tmp_path / "missing.yaml")


def test_bad_regex_names_its_rule(tmp_path: Path) -> None:
    cfg_path = _write(tmp_path, "path_rules:\n  '**/*.py':\n    regex_rules:\n      '(unclosed':\n        visit: x\n")
    with pytest.raises(PatternError, match=r"path_rule '\*\*/\*\.py': regex rule '\(unclosed'"):
        load_config(cfg_path)


def test_bad_glob_names_its_rule(tmp_path: Path) -> None:
    cfg_path = _write(tmp_path, "path_rules:\n  'src/*.c':\n    visit_siblings: '[oops'\n")
    with pytest.raises(PatternError, match="visit_siblings"):
        load_config(cfg_path)
