"""Transitive closures and dependency digests for input files.

Every input file's digest covers, in this order: the algorithm version,
the salt, the config file digest, the file's own path, then each path of
its sorted closure followed by that file's content digest.
"""

from __future__ import annotations

import hashlib
import os
import struct
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from . import ALGORITHM_VERSION
from .util import sha256_file

STATS_SORT_COUNT = "count"
STATS_SORT_NAME = "name"
STATS_SORT_CHOICES = (STATS_SORT_COUNT, STATS_SORT_NAME)


def closure(relations: Mapping[str, Sequence[str]], file: str) -> list[str]:
    """``file`` and everything reachable from it, as a sorted list."""
    visited: set[str] = set()
    stack = [file]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        stack.extend(reversed(relations.get(current, ())))
    return sorted(visited)


def content_hashes(base_dir: Path, files: Iterable[str]) -> dict[str, bytes]:
    return {f: sha256_file(base_dir / f) for f in sorted(files)}


def dependency_digest(
    file: str,
    deps: Sequence[str],
    file_hashes: Mapping[str, bytes],
    *,
    config_hash: bytes,
    salt: str = "",
    algorithm_version: int = ALGORITHM_VERSION,
) -> str:
    h = hashlib.sha256()
    h.update(struct.pack("<Q", algorithm_version))
    h.update(salt.encode("utf-8"))
    h.update(config_hash)
    h.update(file.encode("utf-8"))
    for dep in deps:
        h.update(dep.encode("utf-8"))
        h.update(file_hashes[dep])
    return h.hexdigest()


@dataclass
class PipelineResult:
    dep_hashes: dict[str, str] = field(default_factory=dict)
    dep_counts: dict[str, int] = field(default_factory=dict)
    rev_dep_counts: Counter = field(default_factory=Counter)


def run_pipeline(
    relations: Mapping[str, Sequence[str]],
    input_files: Sequence[str],
    *,
    file_hashes: Mapping[str, bytes] | None = None,
    config_hash: bytes = b"",
    salt: str = "",
    dep_stats: bool = False,
    rev_dep_stats: bool = False,
    max_workers: int | None = None,
) -> PipelineResult:
    """Close and digest every input file on a bounded thread pool.

    ``relations`` and ``file_hashes`` must be complete before the call and
    are only read. Digests are produced only when ``file_hashes`` is given.
    The first failing task cancels the queued ones and its error propagates.
    """
    result = PipelineResult()
    hashes_lock = threading.Lock()
    rev_lock = threading.Lock()

    def _task(file: str) -> tuple[str, int]:
        deps = closure(relations, file)
        if rev_dep_stats:
            with rev_lock:
                result.rev_dep_counts.update(deps)
        if file_hashes is not None:
            digest = dependency_digest(file, deps, file_hashes, config_hash=config_hash, salt=salt)
            with hashes_lock:
                result.dep_hashes[file] = digest
        return file, len(deps)

    workers = max_workers or os.cpu_count() or 1
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="DigestWorker") as executor:
        futures = [executor.submit(_task, f) for f in input_files]
        try:
            for future in as_completed(futures):
                file, count = future.result()
                if dep_stats:
                    result.dep_counts[file] = count
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
    return result


def sort_stats(counts: Mapping[str, int], order: str) -> list[tuple[str, int]]:
    if order == STATS_SORT_COUNT:
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    if order == STATS_SORT_NAME:
        return sorted(counts.items())
    raise ValueError(f"invalid stats-sort value: {order}")


def format_stats(counts: Mapping[str, int], order: str) -> list[str]:
    return [f"{count}\t{name}" for name, count in sort_stats(counts, order)]
