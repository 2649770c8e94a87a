from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ResolveError

# Line-oriented patterns, not a parser: imports may be over- or under-reported.
_IMPORT_SIMPLE = re.compile(r"^[ \t]*import[ \t]+([A-Za-z_][^\n]*)", re.MULTILINE)
_IMPORT_FROM = re.compile(
    r"^[ \t]*from[ \t]+([^\s]+)[ \t]+import[ \t]+(\([^)]*\)|[^\n]+)",
    re.MULTILINE,
)
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DOTTED = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")
_COMMENT = re.compile(r"#[^\n]*")

# Probed beside ``pkg/mod/__init__.py`` and the bare ``pkg/mod/`` directory.
MODULE_FILE_SUFFIXES = (".py", ".pyx", ".pyi")


@dataclass(frozen=True)
class PythonImports:
    modules: list[str] = field(default_factory=list)
    bindings: dict[str, str] = field(default_factory=dict)


def _imported_names(clause: str, name_re: re.Pattern[str] = _IDENT) -> list[tuple[str, str]]:
    """``(name, bound_name)`` pairs of the clause after ``import`` or ``from x import``."""
    body = clause.split(";", 1)[0] if not clause.startswith("(") else clause
    body = _COMMENT.sub("", body).replace("(", " ").replace(")", " ").replace("\\", " ")
    out: list[tuple[str, str]] = []
    for item in body.split(","):
        tokens = item.split()
        if not tokens or not name_re.fullmatch(tokens[0]):
            continue
        name = tokens[0].rstrip(".")
        bound = name
        if len(tokens) >= 3 and tokens[1] == "as" and _IDENT.fullmatch(tokens[2]):
            bound = tokens[2]
        out.append((name, bound))
    return out


def parse_imports(text: str) -> PythonImports:
    """Collect imported module names and the local names they bind.

    ``import a.b, c as d`` binds ``a.b`` to itself and ``c`` and ``d`` to ``c``;
    ``from a import b as c`` records ``a`` and ``a.b`` and binds ``b`` and
    ``c`` to ``a.b``.
    """
    imports = PythonImports()
    for m in _IMPORT_SIMPLE.finditer(text):
        for module, bound in _imported_names(m.group(1), _DOTTED):
            imports.modules.append(module)
            imports.bindings[module] = module
            imports.bindings[bound] = module
    for m in _IMPORT_FROM.finditer(text):
        module = m.group(1)
        imports.modules.append(module)
        for name, bound in _imported_names(m.group(2)):
            full_name = f"{module}.{name}"
            imports.modules.append(full_name)
            imports.bindings[name] = full_name
            imports.bindings[bound] = full_name
    return imports


def in_root_packages(module: str, root_packages: list[str]) -> bool:
    return any(module == root or module.startswith(root + ".") for root in root_packages)


class PythonModuleResolver:
    """Resolve dotted module names to the files that implement them.

    A module resolves to every candidate form that exists on disk plus,
    when anything existed, everything its parent package resolves to.
    Results are memoized per distinct name, negative results included.
    The memo is a plain dict: drive one resolver from a single thread.
    """

    def __init__(self, base_dir: Path, root_packages: list[str]) -> None:
        self.base_dir = base_dir
        self.root_packages = list(root_packages)
        self._cache: dict[str, tuple[str, ...]] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def resolve(self, module: str) -> tuple[str, ...]:
        if module.startswith("."):
            raise ResolveError(f"relative imports are not supported: '{module}'")
        cached = self._cache.get(module)
        if cached is not None:
            return cached
        if not in_root_packages(module, self.root_packages):
            self._cache[module] = ()
            return ()

        rel_dir = module.replace(".", "/")
        paths: list[str] = []
        found = False
        init_path = f"{rel_dir}/__init__.py"
        if (self.base_dir / init_path).is_file():
            paths.append(init_path)
            found = True
        if (self.base_dir / rel_dir).is_dir():
            # namespace package: exists, but contributes no file
            found = True
        for suffix in MODULE_FILE_SUFFIXES:
            candidate = rel_dir + suffix
            if (self.base_dir / candidate).is_file():
                paths.append(candidate)
                found = True

        if found and "." in module:
            paths.extend(self.resolve(module.rsplit(".", 1)[0]))

        result = tuple(paths)
        self._cache[module] = result
        return result
