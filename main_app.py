# -*- coding: utf-8 -*-
"""
Tanda Planner - Main Application
Builds milonga playlists from a music library and streams them as NDJSON
"""
import argparse
import json
import logging
import os
import sys
import threading
from typing import Any, Dict, Iterable, List, Optional

import yaml

from tanda_planner.config_loader import Config
from tanda_planner.library import LibraryStore
from tanda_planner.logging_utils import add_logging_args, configure_logging, resolve_log_level
from tanda_planner.openai_client import OpenAIOracle
from tanda_planner.planning.assembler import FILLER_SECONDS, GenerateRequest, SequenceAssembler
from tanda_planner.planning.catalog_resolver import catalog_tracks, resolve_catalog, working_snapshot
from tanda_planner.planning.errors import CatalogMismatch, PlannerError
from tanda_planner.planning.events import error_event
from tanda_planner.planning.fallback_planner import fallback_events
from tanda_planner.planning.fillers import list_fillers
from tanda_planner.planning.models import DEFAULT_PATTERN, DEFAULT_SIZES
from tanda_planner.planning.plan_edits import retry_group, swap_tandas
from tanda_planner.planning.replacement import ReplacementRequest, ReplacementService
from tanda_planner.planning.review import review_playlist

logger = logging.getLogger("tanda_planner.cli")


def load_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_event(event: Dict[str, Any], out=None) -> None:
    """One JSON document per line, flushed so consumers see it immediately"""
    out = out or sys.stdout
    out.write(json.dumps(event, ensure_ascii=False) + "\n")
    out.flush()


def parse_sizes(value: Optional[str]) -> Dict[str, int]:
    """``Tango=4,Vals=3`` -> {"Tango": 4, "Vals": 3}"""
    sizes: Dict[str, int] = {}
    if not value:
        return sizes
    for part in value.split(","):
        if not part.strip():
            continue
        style, _, size = part.partition("=")
        try:
            sizes[style.strip().capitalize()] = int(size)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid size '{part}' (expected Style=N)")
    return sizes


def load_config(path: str) -> Optional[Config]:
    if not os.path.exists(path):
        logger.info(f"{path} not found; using built-in defaults")
        return None
    return Config(path)


def build_oracle(config: Optional[Config]) -> OpenAIOracle:
    """OpenAI-backed oracle from config (or OPENAI_API_KEY alone)"""
    if config is None:
        api_key = os.getenv('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("Set OPENAI_API_KEY or provide config.yaml with openai.api_key")
        return OpenAIOracle(api_key=api_key)
    return OpenAIOracle(
        api_key=config.require_api_key(),
        model=config.openai_model,
        timeout=config.oracle_timeout_seconds,
        max_retries=config.oracle_max_retries,
        temperature=config.openai_temperature,
    )


def _library(args) -> LibraryStore:
    payload = load_json(args.library)
    records = payload.get("tracks", []) if isinstance(payload, dict) else payload
    return LibraryStore(records)


def _stream(events: Iterable[Dict[str, Any]]) -> int:
    status = 0
    for event in events:
        write_event(event)
        if event.get("type") == "error":
            status = 1
    return status


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_generate(args, config: Optional[Config]) -> int:
    snapshot = _library(args).snapshot()
    sizes = dict(config.sizes if config else DEFAULT_SIZES)
    sizes.update(parse_sizes(args.sizes))
    pattern = args.pattern.split(",") if args.pattern else list(config.pattern if config else DEFAULT_PATTERN)
    minutes = args.minutes or (config.minutes if config else 180)
    catalog = load_json(args.catalog) if args.catalog else None
    genres = config.filler_genres if config else None

    if args.offline:
        tracks = list(snapshot.tracks)
        if catalog is not None:
            try:
                tracks = resolve_catalog(catalog_tracks(catalog), snapshot).working_set
            except CatalogMismatch as e:
                write_event(error_event(str(e), e.details()))
                return 1
        fillers = list_fillers(snapshot, genres=genres)
        return _stream(fallback_events(tracks, pattern, minutes, sizes, fillers))

    request = GenerateRequest(
        minutes=minutes,
        pattern=pattern,
        sizes=sizes,
        catalog=catalog,
        schedule=load_json(args.schedule) if args.schedule else None,
        filler_genres=genres,
    )
    assembler = SequenceAssembler(
        snapshot,
        oracle=build_oracle(config),
        filler_seconds=config.filler_seconds if config else FILLER_SECONDS,
        overshoot_seconds=config.overshoot_seconds if config else 30,
        candidate_limit=config.oracle_candidate_limit if config else 80,
        retry_alternatives=config.retry_alternatives if config else 3,
        random_seed=config.random_seed if config else None,
    )
    cancel = threading.Event()
    try:
        return _stream(assembler.generate(request, cancel_event=cancel))
    except KeyboardInterrupt:
        cancel.set()
        logger.warning("Interrupted; generation cancelled")
        return 130


def cmd_replace(args, config: Optional[Config]) -> int:
    snapshot = _library(args).snapshot()
    if args.catalog:
        snapshot = working_snapshot(resolve_catalog(catalog_tracks(load_json(args.catalog)), snapshot))
    neighbors = load_json(args.neighbors) if args.neighbors else None
    oracle = None if args.offline else build_oracle(config)
    service = ReplacementService(snapshot, oracle=oracle)
    result = service.replace(ReplacementRequest(
        style=args.style,
        origin=args.orchestra,
        neighbors=neighbors,
        avoid_ids=args.avoid or (),
        rejected_ids=args.rejected or (),
        top_k=args.top_k,
        homogenize=args.homogenize,
    ))
    write_event({"type": "replacement", **result.to_dict()})
    return 0


def cmd_review(args, config: Optional[Config]) -> int:
    playlist = load_json(args.playlist)
    analysis = None
    if args.analysis:
        with open(args.analysis, 'r', encoding='utf-8') as f:
            analysis = f.read()
    result = review_playlist(build_oracle(config), playlist, analysis)
    write_event({"type": "review", **result.to_dict()})
    return 0


def cmd_swap(args, config: Optional[Config]) -> int:
    plan = load_json(args.plan)
    write_event({"type": "plan", "plan": swap_tandas(plan, args.i, args.j)})
    return 0


def cmd_retry(args, config: Optional[Config]) -> int:
    store = _library(args)
    library = store.snapshot()
    working = library
    if args.catalog:
        working = working_snapshot(resolve_catalog(catalog_tracks(load_json(args.catalog)), library))
    current_plan: List[Dict[str, Any]] = []
    if args.plan:
        plan = load_json(args.plan)
        current_plan = plan.get("tandas", []) if isinstance(plan, dict) else plan
    result = retry_group(
        working,
        library,
        build_oracle(config),
        style=args.style,
        current_origin=args.orchestra,
        size=args.size,
        avoid_origins=args.avoid or (),
        current_plan=current_plan,
    )
    write_event({"type": "retry", **result.to_dict()})
    return 0


COMMANDS = {
    "generate": cmd_generate,
    "replace": cmd_replace,
    "review": cmd_review,
    "swap": cmd_swap,
    "retry": cmd_retry,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Plan tango milonga playlists (tandas and cortinas) from a music library"
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)"
    )
    add_logging_args(parser)
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Stream a full milonga plan as NDJSON")
    gen.add_argument("library", help="Library JSON (list of tracks or {\"tracks\": [...]})")
    gen.add_argument("--catalog", help="Reference catalog JSON restricting the tracks used")
    gen.add_argument("--minutes", type=int, help="Time budget in minutes (default from config: 180)")
    gen.add_argument("--pattern", help="Comma-separated styles, e.g. Tango,Tango,Vals,Tango,Tango,Milonga")
    gen.add_argument("--sizes", help="Tanda sizes per style, e.g. Tango=4,Vals=3,Milonga=3")
    gen.add_argument("--schedule", help="Role schedule JSON ({\"tandas\": [{\"tandaIndex\", \"role\"}]})")
    gen.add_argument(
        "--offline",
        action="store_true",
        help="Use the deterministic planner instead of the oracle"
    )

    rep = sub.add_parser("replace", help="Pick a replacement for one track of a tanda")
    rep.add_argument("library")
    rep.add_argument("--catalog")
    rep.add_argument("--style", required=True)
    rep.add_argument("--orchestra", help="Prefer this orchestra")
    rep.add_argument("--neighbors", help="JSON with prev/next track descriptors (key, bpm, energy)")
    rep.add_argument("--avoid", nargs="*", help="Track ids in the current tanda")
    rep.add_argument("--rejected", nargs="*", help="Replacements already rejected for this position")
    rep.add_argument("--top-k", type=int, default=6)
    rep.add_argument("--homogenize", action="store_true", help="Target the tanda's dominant orchestra")
    rep.add_argument("--offline", action="store_true", help="Rank by continuity only, no oracle")

    rev = sub.add_parser("review", help="Ask for an expert review of a finished playlist")
    rev.add_argument("playlist", help="Playlist JSON with tandas, duration and selectedSchedule")
    rev.add_argument("--analysis", help="Text file with programmatic analysis to include")

    swp = sub.add_parser("swap", help="Swap two tandas of a saved plan")
    swp.add_argument("plan", help="Plan JSON (the 'plan' object of a done event)")
    swp.add_argument("i", type=int)
    swp.add_argument("j", type=int)

    rty = sub.add_parser("retry", help="Regenerate one tanda with a different orchestra")
    rty.add_argument("library")
    rty.add_argument("--catalog")
    rty.add_argument("--style", required=True)
    rty.add_argument("--orchestra", help="Current orchestra of the tanda")
    rty.add_argument("--size", type=int, default=4)
    rty.add_argument("--avoid", nargs="*", help="Other orchestras to avoid")
    rty.add_argument("--plan", help="Current plan JSON; its tracks are not reused")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ValueError, yaml.YAMLError) as e:
        configure_logging(level=resolve_log_level(args), force=True)
        logger.error(f"Configuration error: {e}")
        return 1

    configure_logging(
        level=resolve_log_level(args, config.log_level if config else None),
        log_file=args.log_file or (config.log_file if config else None),
        force=True,
        show_run_id=args.show_run_id,
    )

    try:
        return COMMANDS[args.command](args, config)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.error(f"Could not read input: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid request: {e}")
        return 1
    except PlannerError as e:
        write_event(error_event(str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
