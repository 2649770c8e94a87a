from __future__ import annotations

import argparse
import cProfile
import sys
import time
from dataclasses import asdict, replace
from pathlib import Path
from typing import Mapping

from . import __version__
from .config import load_config
from .errors import ConfigError, DepDigestError
from .graph import build_graph, collect_input_files
from .hashing import STATS_SORT_CHOICES, closure, content_hashes, format_stats, run_pipeline
from .util import (
    generate_request_id,
    get_request_id,
    log_event,
    set_request_id,
    setup_json_logger,
    write_json,
)

_LOG = setup_json_logger("depdigest.cli")

PROFILE_PATH = Path("depdigest.prof")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="depdigest",
        description="Content hashes of input files and everything they depend on.",
        allow_abbrev=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "-version", "--version", action="version", version=f"version\t{__version__}")
    p.add_argument("-config", "--config", required=True, help="Path to config file")
    p.add_argument("-verbose", "--verbose", action="store_true", help="Verbose output")
    p.add_argument(
        "-input-files",
        "--input-files",
        default="",
        help="Comma separated list of input files (overrides config)",
    )
    p.add_argument(
        "-print-dep-stats", "--print-dep-stats", action="store_true", help="Print forward dependency statistics"
    )
    p.add_argument(
        "-print-rev-dep-stats", "--print-rev-dep-stats", action="store_true", help="Print reverse dependency statistics"
    )
    p.add_argument(
        "-stats-sort", "--stats-sort", choices=STATS_SORT_CHOICES, default="count", help="Sort statistics by 'count' or 'name'"
    )
    p.add_argument(
        "-self-profile", "--self-profile", action="store_true", help=f"Profile the program into '{PROFILE_PATH}'"
    )
    p.add_argument("-out-dep-hashes", "--out-dep-hashes", default="", help="Output dependency hashes to the specified file")
    p.add_argument("-out-relations", "--out-relations", default="", help="Output relations to the specified file")
    p.add_argument(
        "-out-recursive-deps",
        "--out-recursive-deps",
        default="",
        help="Output recursive dependencies of the file given in '-out-recursive-deps-for' to the specified file",
    )
    p.add_argument(
        "-out-recursive-deps-for",
        "--out-recursive-deps-for",
        default="",
        help="File whose recursive dependencies are written to '-out-recursive-deps'",
    )
    p.add_argument(
        "-hash-salt",
        "--hash-salt",
        default="",
        help="Include this string in the dependency hash calculation. Use for cache busting.",
    )
    p.add_argument(
        "-request-id",
        "--request-id",
        default=None,
        help="Correlation identifier attached to every structured log event.",
    )
    return p


def _print_stats(counts: Mapping[str, int], order: str) -> None:
    for line in format_stats(counts, order):
        print(line, file=sys.stderr)


def run(args: argparse.Namespace) -> int:
    log_event(_LOG, "config.load", path=args.config)
    cfg, config_hash = load_config(Path(args.config))
    override = [f for f in args.input_files.split(",") if f]
    if override:
        cfg = replace(cfg, inputs=override)
    if args.verbose:
        log_event(_LOG, "config.loaded", config=asdict(cfg))
    log_event(_LOG, "config.base_dir", base_dir=str(cfg.base_dir))

    input_files = collect_input_files(cfg)
    if not input_files:
        log_event(_LOG, "run.no_inputs")
        return 0

    log_event(_LOG, "graph.build.start", inputs=len(input_files))
    relations = build_graph(cfg, input_files, verbose=args.verbose)
    log_event(_LOG, "graph.build.finish", files=len(relations))

    if args.out_recursive_deps_for and args.out_recursive_deps_for not in relations:
        raise ConfigError(f"'{args.out_recursive_deps_for}' is not part of the dependency graph")

    if args.out_relations:
        log_event(_LOG, "output.relations", path=args.out_relations)
        write_json(Path(args.out_relations), relations)

    wants_hashes = bool(args.out_dep_hashes)
    if not (args.print_dep_stats or args.print_rev_dep_stats or wants_hashes or args.out_recursive_deps):
        log_event(_LOG, "run.done")
        return 0

    file_hashes = None
    if wants_hashes:
        log_event(_LOG, "hash.files.start", files=len(relations))
        file_hashes = content_hashes(cfg.base_dir, relations)

    log_event(_LOG, "hash.deps.start", inputs=len(input_files))
    result = run_pipeline(
        relations,
        input_files,
        file_hashes=file_hashes,
        config_hash=config_hash,
        salt=args.hash_salt,
        dep_stats=args.print_dep_stats,
        rev_dep_stats=args.print_rev_dep_stats,
    )

    if args.out_recursive_deps:
        log_event(
            _LOG,
            "output.recursive_deps",
            file=args.out_recursive_deps_for,
            path=args.out_recursive_deps,
        )
        write_json(Path(args.out_recursive_deps), closure(relations, args.out_recursive_deps_for))
    if args.print_dep_stats:
        _print_stats(result.dep_counts, args.stats_sort)
    if wants_hashes:
        log_event(_LOG, "output.dep_hashes", path=args.out_dep_hashes)
        write_json(Path(args.out_dep_hashes), result.dep_hashes)
    if args.print_rev_dep_stats:
        _print_stats(result.rev_dep_counts, args.stats_sort)

    log_event(_LOG, "run.done")
    return 0


def _run_with_observability(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    log_event(_LOG, "cli.run.start", config=args.config)
    try:
        rc = run(args)
    except DepDigestError as exc:
        latency_ms = (time.perf_counter() - started) * 1000.0
        log_event(
            _LOG,
            "cli.run.error",
            error=str(exc),
            error_code=exc.code,
            latency_ms=round(latency_ms, 3),
        )
        return 1

    latency_ms = (time.perf_counter() - started) * 1000.0
    log_event(_LOG, "cli.run.finish", latency_ms=round(latency_ms, 3), status="success")
    return rc


def main(argv: list[str] | None = None) -> None:
    p = build_parser()
    args = p.parse_args(argv)
    if bool(args.out_recursive_deps) != bool(args.out_recursive_deps_for):
        p.error("both -out-recursive-deps and -out-recursive-deps-for must be specified together")

    set_request_id(args.request_id or generate_request_id())
    log_event(_LOG, "cli.request.context", request_id=get_request_id())

    if args.self_profile:
        profiler = cProfile.Profile()
        profiler.enable()
        try:
            rc = _run_with_observability(args)
        finally:
            profiler.disable()
            profiler.dump_stats(str(PROFILE_PATH))
    else:
        rc = _run_with_observability(args)

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
