from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Sequence

from . import globbing
from .config import Config, RuleActions
from .errors import DepDigestError, PatternError, ResolveError
from .pyresolve import PythonImports, PythonModuleResolver, in_root_packages, parse_imports
from .util import log_event, read_text, setup_json_logger

_LOG = setup_json_logger("depdigest.visitor")

_PLACEHOLDER = re.compile(r"\$(\d+)")


def expand_template(template: str, captures: Sequence[str]) -> str:
    """Replace ``$0``, ``$1``, ... with the matching capture group text.

    Placeholders without a matching group are left as they are; with no
    captures at all the template is returned untouched.
    """
    if not captures:
        return template

    def _sub(m: re.Match[str]) -> str:
        idx = int(m.group(1))
        return captures[idx] if idx < len(captures) else m.group(0)

    return _PLACEHOLDER.sub(_sub, template)


def expand_templates(templates: list[str], captures: Sequence[str]) -> list[str]:
    return [expand_template(t, captures) for t in templates]


def ancestor_dirs(rel_dir: str) -> list[str]:
    """``a/b`` -> ``["a/b", "a", ""]``; ``""`` stands for the base directory."""
    out: list[str] = []
    while rel_dir:
        out.append(rel_dir)
        rel_dir = posixpath.dirname(rel_dir)
    out.append("")
    return out


def _anchor(rel_dir: str, rel: str) -> str:
    return f"{rel_dir}/{rel}" if rel_dir else rel


class _FileVisit:
    """State of one file's visit: lazily read text and collected relations."""

    def __init__(self, base_dir: Path, file: str) -> None:
        self.file = file
        self.dir = posixpath.dirname(file)
        self._path = base_dir / file
        self._text: str | None = None
        self._imports: PythonImports | None = None
        self.relations: list[str] = []

    @property
    def text(self) -> str:
        if self._text is None:
            self._text = read_text(self._path)
        return self._text

    @property
    def imports(self) -> PythonImports:
        if self._imports is None:
            self._imports = parse_imports(self.text)
        return self._imports


class RelationEngine:
    """Evaluates the configured rules against one file at a time.

    The regex cache and the resolver memo are shared across visits and are
    not locked, so an engine must only be used from one thread.
    """

    def __init__(
        self,
        cfg: Config,
        *,
        resolver: PythonModuleResolver | None = None,
        verbose: bool = False,
    ) -> None:
        self.cfg = cfg
        self.resolver = resolver or PythonModuleResolver(cfg.base_dir, cfg.root_python_packages)
        self.verbose = verbose
        self._regex_cache: dict[str, re.Pattern[str]] = {}

    def _compile(self, pattern: str) -> re.Pattern[str]:
        compiled = self._regex_cache.get(pattern)
        if compiled is None:
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                raise PatternError(f"error while compiling regex rule '{pattern}': {exc}") from exc
            self._regex_cache[pattern] = compiled
        return compiled

    def _glob(self, root: Path, pattern: str, what: str) -> list[str]:
        try:
            return globbing.glob(root, pattern)
        except DepDigestError as exc:
            raise exc.within(f"error while visiting {what} '{pattern}'") from exc

    def apply_actions(self, visit: _FileVisit, actions: RuleActions, captures: Sequence[str] = ()) -> None:
        base_dir = self.cfg.base_dir

        for pattern in expand_templates(actions.visit, captures):
            visit.relations.extend(self._glob(base_dir, pattern, "file"))

        for pattern in expand_templates(actions.visit_siblings, captures):
            for rel in self._glob(base_dir / visit.dir, pattern, "sibling"):
                visit.relations.append(_anchor(visit.dir, rel))

        grand_siblings = expand_templates(actions.visit_grand_siblings, captures)
        if grand_siblings:
            for rel_dir in ancestor_dirs(visit.dir):
                for pattern in grand_siblings:
                    for rel in self._glob(base_dir / rel_dir, pattern, f"grand sibling at '{rel_dir or '.'}'"):
                        visit.relations.append(_anchor(rel_dir, rel))

        if not actions.parses_python:
            return
        imports = visit.imports

        for ident in expand_templates(actions.visit_python_all_submodules_for, captures):
            if in_root_packages(ident, self.cfg.root_python_packages):
                full_name = ident
            else:
                full_name = imports.bindings.get(ident)
                if full_name is None:
                    raise ResolveError(f"module ident '{ident}' not found among the imports of '{visit.file}'")
            if self.verbose:
                log_event(_LOG, "visit.submodules", file=visit.file, ident=ident, module=full_name)
            pattern = full_name.replace(".", "/") + "/**/*.py"
            visit.relations.extend(self._glob(base_dir, pattern, f"submodules of '{full_name}' via"))

        for module in imports.modules:
            try:
                visit.relations.extend(self.resolver.resolve(module))
            except DepDigestError as exc:
                raise exc.within(f"error while resolving python module '{module}'") from exc

    def visit_file(self, file: str) -> list[str]:
        """Files ``file`` directly relates to, unsorted and possibly repeated."""
        cfg = self.cfg
        if globbing.match_any(cfg.global_exclude, file):
            return []
        if self.verbose:
            log_event(_LOG, "visit.file", file=file)

        visit = _FileVisit(cfg.base_dir, file)
        for rule_pattern, rule in cfg.path_rules.items():
            if not globbing.match(rule_pattern, file):
                continue
            if self.verbose:
                log_event(_LOG, "visit.rule.matched", file=file, rule=rule_pattern)
            where = f"error while running path_rule '{rule_pattern}'"
            try:
                self.apply_actions(visit, rule.actions)
                for regex, actions in rule.regex_rules.items():
                    if globbing.match_any(actions.exclude, file):
                        continue
                    compiled = self._compile(regex)
                    for m in compiled.finditer(visit.text):
                        captures = (m.group(0), *(g or "" for g in m.groups()))
                        if self.verbose:
                            log_event(_LOG, "visit.regex.matched", file=file, regex=regex, captures=list(captures))
                        try:
                            self.apply_actions(visit, actions, captures)
                        except DepDigestError as exc:
                            raise exc.within(f"error while running regex rule '{regex}'") from exc
            except DepDigestError as exc:
                raise exc.within(where) from exc
        return visit.relations

    def related_files(self, file: str) -> list[str]:
        """Direct relations of ``file`` merged with the global deps, sorted and unique."""
        return sorted(set(self.cfg.global_deps).union(self.visit_file(file)))
