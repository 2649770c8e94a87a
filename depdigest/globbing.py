"""Extended glob matching and enumeration over a directory root.

Patterns are ``/``-separated and relative to the root they are applied to.
``*`` and ``?`` never cross a ``/``, ``[...]`` is a character class,
``{a,b}`` expands to alternatives and a ``**`` segment spans zero or more
directories. Results are always ``/``-separated relative paths, sorted.
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path

from .errors import PatternError, ScanError

_MAGIC = re.compile(r"[*?\[{\\]")


def canon_rel(rel: str) -> str:
    r = rel.replace("\\", "/")
    while r.startswith("./"):
        r = r[2:]
    return r


def _canon_pattern(pattern: str) -> str:
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def has_magic(segment: str) -> bool:
    return _MAGIC.search(segment) is not None


def _class_end(pattern: str, start: int) -> int:
    """Index of the ``]`` closing the class opened at ``start``, or -1."""
    n = len(pattern)
    j = start + 1
    if j < n and pattern[j] in "!^":
        j += 1
    if j < n and pattern[j] == "]":
        j += 1
    while j < n and pattern[j] != "]":
        if pattern[j] == "\\":
            j += 1
        j += 1
    return j if j < n else -1


def _split_alternatives(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            current.append(body[i : i + 2])
            i += 2
            continue
        if ch == "[":
            j = _class_end(body, i)
            if j >= 0:
                current.append(body[i : j + 1])
                i = j + 1
                continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1
    parts.append("".join(current))
    return parts


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives, nested groups included, in order."""
    depth = 0
    start = -1
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            j = _class_end(pattern, i)
            if j < 0:
                raise PatternError(f"unterminated character class in glob '{pattern}'")
            i = j + 1
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            if depth == 0:
                raise PatternError(f"unbalanced '}}' in glob '{pattern}'")
            depth -= 1
            if depth == 0:
                head, body, tail = pattern[:start], pattern[start + 1 : i], pattern[i + 1 :]
                out: list[str] = []
                for alt in _split_alternatives(body):
                    for expanded in expand_braces(head + alt + tail):
                        if expanded not in out:
                            out.append(expanded)
                return out
        i += 1
    if depth:
        raise PatternError(f"unbalanced '{{' in glob '{pattern}'")
    return [pattern]


def _translate_class(body: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            out.append(re.escape(body[i + 1]))
            i += 2
            continue
        out.append(ch if ch == "-" else re.escape(ch))
        i += 1
    return "".join(out)


@lru_cache(maxsize=4096)
def _segment_regex(segment: str) -> re.Pattern[str]:
    out: list[str] = []
    i = 0
    n = len(segment)
    while i < n:
        ch = segment[i]
        if ch == "*":
            while i < n and segment[i] == "*":
                i += 1
            out.append("[^/]*")
            continue
        if ch == "?":
            out.append("[^/]")
        elif ch == "[":
            j = _class_end(segment, i)
            if j < 0:
                raise PatternError(f"unterminated character class in glob segment '{segment}'")
            body = segment[i + 1 : j]
            if body[:1] in ("!", "^"):
                out.append("[^/" + _translate_class(body[1:]) + "]")
            else:
                out.append("[" + _translate_class(body) + "]")
            i = j
        elif ch == "\\":
            if i + 1 >= n:
                raise PatternError(f"trailing escape in glob segment '{segment}'")
            out.append(re.escape(segment[i + 1]))
            i += 1
        else:
            out.append(re.escape(ch))
        i += 1
    try:
        return re.compile("".join(out), re.DOTALL)
    except re.error as exc:
        raise PatternError(f"bad glob segment '{segment}': {exc}") from exc


def _segments(pattern: str) -> list[str]:
    segs = _canon_pattern(pattern).split("/")
    for seg in segs:
        if seg in (".", ".."):
            raise PatternError(f"glob '{pattern}' may not contain '.' or '..' segments")
        if seg != "**" and has_magic(seg):
            _segment_regex(seg)
    return segs


def validate(pattern: str) -> None:
    """Raise PatternError if ``pattern`` is malformed."""
    for alt in expand_braces(pattern):
        _segments(alt)


def _match_segments(pats: list[str], pi: int, segs: list[str], si: int) -> bool:
    while pi < len(pats):
        pat = pats[pi]
        if pat == "**":
            while pi + 1 < len(pats) and pats[pi + 1] == "**":
                pi += 1
            if pi + 1 == len(pats):
                return True
            for k in range(si, len(segs) + 1):
                if _match_segments(pats, pi + 1, segs, k):
                    return True
            return False
        if si >= len(segs):
            return False
        if has_magic(pat):
            if _segment_regex(pat).fullmatch(segs[si]) is None:
                return False
        elif pat != segs[si]:
            return False
        pi += 1
        si += 1
    return si == len(segs)


def match(pattern: str, path: str) -> bool:
    """Whether the relative ``path`` is matched in full by ``pattern``."""
    segs = canon_rel(path).split("/")
    return any(_match_segments(_segments(alt), 0, segs, 0) for alt in expand_braces(pattern))


def match_any(patterns: list[str], path: str) -> bool:
    return any(match(p, path) for p in patterns)


def _join(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


def _entries(root: Path, rel_dir: str) -> list[tuple[str, bool, bool, bool]]:
    """(name, is_dir, is_symlink, is_file) for each entry, sorted by name."""
    target = root / rel_dir if rel_dir else root
    rows: list[tuple[str, bool, bool, bool]] = []
    try:
        with os.scandir(target) as it:
            for entry in it:
                is_dir = entry.is_dir()
                rows.append((entry.name, is_dir, entry.is_symlink(), not is_dir and entry.is_file()))
    except (FileNotFoundError, NotADirectoryError):
        return []
    except OSError as exc:
        raise ScanError(f"cannot list directory '{target}': {exc}") from exc
    return sorted(rows)


def _walk(root: Path, rel_dir: str, segs: list[str], pi: int, found: set[str]) -> None:
    seg = segs[pi]
    last = pi == len(segs) - 1

    if seg == "**":
        if last:
            for name, is_dir, is_link, is_file in _entries(root, rel_dir):
                child = _join(rel_dir, name)
                if is_dir and not is_link:
                    _walk(root, child, segs, pi, found)
                elif is_file:
                    found.add(child)
            return
        _walk(root, rel_dir, segs, pi + 1, found)
        for name, is_dir, is_link, _ in _entries(root, rel_dir):
            # symlinked directories are not descended into by ``**``
            if is_dir and not is_link:
                _walk(root, _join(rel_dir, name), segs, pi, found)
        return

    if not has_magic(seg):
        child = _join(rel_dir, seg)
        full = root / child
        if last:
            if full.is_file():
                found.add(child)
        elif full.is_dir():
            _walk(root, child, segs, pi + 1, found)
        return

    rx = _segment_regex(seg)
    for name, is_dir, _, is_file in _entries(root, rel_dir):
        if rx.fullmatch(name) is None:
            continue
        if last:
            if is_file:
                found.add(_join(rel_dir, name))
        elif is_dir:
            _walk(root, _join(rel_dir, name), segs, pi + 1, found)


def glob(root: Path, pattern: str) -> list[str]:
    """Regular files under ``root`` matched by ``pattern``.

    A missing root or intermediate directory is simply no match; any other
    filesystem error raises ScanError.
    """
    found: set[str] = set()
    for alt in expand_braces(pattern):
        segs = _segments(alt)
        if segs == [""]:
            continue
        _walk(root, "", segs, 0, found)
    return sorted(found)
