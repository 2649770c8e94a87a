from __future__ import annotations

from . import globbing
from .config import Config
from .errors import DepDigestError
from .util import log_event, setup_json_logger
from .visitor import RelationEngine

_LOG = setup_json_logger("depdigest.graph")


def collect_input_files(cfg: Config) -> list[str]:
    files: set[str] = set()
    for pattern in cfg.inputs:
        try:
            files.update(globbing.glob(cfg.base_dir, pattern))
        except DepDigestError as exc:
            raise exc.within(f"error while collecting input files: glob '{pattern}'") from exc
    return sorted(files)


def build_graph(
    cfg: Config,
    input_files: list[str],
    *,
    engine: RelationEngine | None = None,
    verbose: bool = False,
) -> dict[str, list[str]]:
    """Forward relation map of every file reachable from ``input_files``.

    Expands wave by wave: each wave visits the not yet processed files of
    the previous wave's relations. Runs on the calling thread only.
    """
    engine = engine or RelationEngine(cfg, verbose=verbose)
    processed: set[str] = set()
    relations: dict[str, list[str]] = {}

    frontier = sorted(set(input_files))
    wave = 0
    while frontier:
        wave += 1
        if verbose:
            log_event(_LOG, "graph.wave", wave=wave, frontier=len(frontier))
        next_frontier: set[str] = set()
        for file in frontier:
            if file in processed:
                continue
            processed.add(file)
            try:
                related = engine.related_files(file)
            except DepDigestError as exc:
                raise exc.within(f"error while visiting file '{file}'") from exc
            relations[file] = related
            next_frontier.update(related)
        frontier = sorted(next_frontier)

    return dict(sorted(relations.items()))
