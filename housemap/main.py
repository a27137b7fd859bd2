"""Command-line entrypoints for the house directory."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import structlog
import tomllib
from dotenv import load_dotenv
from pydantic import ValidationError

from housemap.editor.submit import RecordEditor, user_message
from housemap.errors import GatewayCallFailed, PersistenceRejected, ResolutionFailed
from housemap.fetch.session import create_geo_session
from housemap.gateway.config import GatewaySettings
from housemap.gateway.nominatim import NominatimGateway
from housemap.geo.models import ExternalCandidate, GeoPoint, PickResult, footprint_to_document
from housemap.memory.kv import JsonFileKeyValueStore
from housemap.memory.last_location import DEFAULT_ZOOM, LastLocationMemory, initial_view
from housemap.normalize.address import normalize_address
from housemap.normalize.fields import join_series
from housemap.observability.log import configure_logging
from housemap.observability.metrics import MetricsRegistry
from housemap.records.models import BuildingForm, BuildingRecord
from housemap.records.store import LocalRecordStore
from housemap.records.writes import OptimisticWriter
from housemap.resolve.resolver import CoordinateResolver, ResolutionMode
from housemap.search.filters import SEARCH_FIELDS
from housemap.view.directory import DirectoryView

LOGGER = structlog.get_logger(__name__)

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DEFAULT_LOGGING_PATH = Path("config/logging.yaml")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file."""
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _add_record_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--address", required=required)
    parser.add_argument("--year", required=required, help="Year or range, e.g. 1975 or 1975-1977")
    parser.add_argument("--series", help="Comma-separated building series")
    parser.add_argument("--floors", type=int, required=required)
    parser.add_argument("--image-url")
    parser.add_argument("--floor-plan", action="append", dest="floor_plans", help="Floor plan URL (repeatable)")
    parser.add_argument("--external-id", help="Map object reference such as W123456")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ResolutionMode],
        default=ResolutionMode.ADDRESS.value,
        help="Which input places the building",
    )
    parser.add_argument("--lat", type=float, help="Picked point latitude")
    parser.add_argument("--lng", type=float, help="Picked point longitude")


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="housemap", description="Map-based house directory")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH), help="Path to settings TOML")
    sub = parser.add_subparsers(dest="command", required=True)

    geocode = sub.add_parser("geocode", help="Forward geocode an address")
    geocode.add_argument("address")

    pick = sub.add_parser("pick", help="Reverse geocode a map point and fetch its footprint")
    pick.add_argument("--lat", type=float, required=True)
    pick.add_argument("--lng", type=float, required=True)

    add = sub.add_parser("add", help="Create a building record")
    _add_record_arguments(add, required=True)

    edit = sub.add_parser("edit", help="Edit a building record")
    edit.add_argument("record_id")
    _add_record_arguments(edit, required=False)

    delete = sub.add_parser("delete", help="Delete a building record")
    delete.add_argument("record_id")

    sub.add_parser("list", help="List all building records")

    search = sub.add_parser("search", help="Search the directory")
    search.add_argument("--by", choices=SEARCH_FIELDS, default="address")
    search.add_argument("--term", default="")
    search.add_argument("--city")
    search.add_argument("--all-map", action="store_true", help="Ignore the city filter")

    sub.add_parser("last-location", help="Show where the map opens")

    return parser


def record_to_json(record: BuildingRecord) -> Dict[str, object]:
    return {"id": record.id, **record.to_document()}


def candidate_to_json(candidate: ExternalCandidate) -> Dict[str, object]:
    return {
        "footprint": footprint_to_document(candidate.footprint),
        "source_id": candidate.source_id,
        "display_address": candidate.display_address,
    }


def pick_to_json(result: PickResult) -> Dict[str, object]:
    return {
        "point": result.point.to_dict(),
        "display_address": result.display_address,
        "source_id": result.source_id,
        "candidate": candidate_to_json(result.candidate) if result.candidate else None,
    }


def _picked_point(args: argparse.Namespace) -> Optional[GeoPoint]:
    if args.lat is None or args.lng is None:
        return None
    return GeoPoint(lat=args.lat, lng=args.lng)


def _form_from_args(args: argparse.Namespace, existing: Optional[BuildingRecord]) -> BuildingForm:
    def pick(value, fallback):
        return value if value is not None else fallback

    return BuildingForm(
        address=pick(args.address, existing.address if existing else None),
        year=pick(args.year, existing.year if existing else None),
        building_series=pick(args.series, join_series(existing.building_series) if existing else ""),
        floors=pick(args.floors, existing.floors if existing else None),
        image_url=pick(args.image_url, existing.image_url if existing else None),
        floor_plan_urls=pick(args.floor_plans, list(existing.floor_plan_urls) if existing else []),
        external_id=pick(args.external_id, existing.external_id if existing else None),
    )


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _fetch_candidate(
    gateway: NominatimGateway, args: argparse.Namespace, mode: ResolutionMode
) -> Optional[ExternalCandidate]:
    if mode is not ResolutionMode.EXTERNAL_ID:
        return None
    point = _picked_point(args)
    if point is not None:
        return (await gateway.pick_building(point)).candidate
    if args.external_id:
        return await gateway.fetch_candidate_by_id(args.external_id)
    return None


async def _save(
    args: argparse.Namespace,
    *,
    store: LocalRecordStore,
    gateway: NominatimGateway,
    editor: RecordEditor,
) -> int:
    existing: Optional[BuildingRecord] = None
    if args.command == "edit":
        existing = store.get(args.record_id)
        if existing is None:
            print(f"Unknown record: {args.record_id}", file=sys.stderr)
            return 1
    try:
        form = _form_from_args(args, existing)
    except ValidationError as exc:
        print(f"Invalid record: {exc}", file=sys.stderr)
        return 1
    mode = ResolutionMode(args.mode)
    fetched = await _fetch_candidate(gateway, args, mode)
    manual_point = _picked_point(args) if mode is not ResolutionMode.EXTERNAL_ID else None
    write = await editor.submit(
        form,
        mode=mode,
        editing=existing,
        manual_point=manual_point,
        fetched_candidate=fetched,
    )
    outcome = await write
    record_id = existing.id if existing else outcome
    saved = store.get(str(record_id))
    _print(record_to_json(saved) if saved else {"id": record_id})
    return 0


async def run_command(
    args: argparse.Namespace,
    settings: Dict[str, object],
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Execute one CLI command and return the process exit code."""
    app_cfg = settings.get("app", {})
    map_cfg = settings.get("map", {})
    gateway_settings = GatewaySettings.from_settings(settings)
    metrics = MetricsRegistry()
    default_zoom = int(map_cfg.get("default_zoom", DEFAULT_ZOOM))
    memory = LastLocationMemory(JsonFileKeyValueStore(Path(app_cfg.get("memory_path", "data/local_storage.json"))))
    store = LocalRecordStore(
        Path(app_cfg.get("records_path", "data/houses.jsonl")),
        read_only=bool(app_cfg.get("read_only", False)),
    )
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")

    try:
        async with create_geo_session(
            user_agent=gateway_settings.user_agent,
            timeout=gateway_settings.timeout_seconds,
            accept_language=gateway_settings.accept_language,
            transport=transport,
        ) as session:
            gateway = NominatimGateway(session, gateway_settings, metrics=metrics)
            if args.command == "geocode":
                candidates = await gateway.forward_geocode(normalize_address(args.address))
                _print([candidate_to_json(candidate) for candidate in candidates])
                return 0
            if args.command == "pick":
                result = await gateway.pick_building(GeoPoint(lat=args.lat, lng=args.lng))
                _print(pick_to_json(result))
                return 0
            if args.command in ("add", "edit"):
                resolver = CoordinateResolver(gateway, memory=memory, metrics=metrics, default_zoom=default_zoom)
                editor = RecordEditor(resolver, OptimisticWriter(store, metrics=metrics))
                return await _save(args, store=store, gateway=gateway, editor=editor)
            if args.command == "delete":
                resolver = CoordinateResolver(gateway, memory=memory, metrics=metrics, default_zoom=default_zoom)
                editor = RecordEditor(resolver, OptimisticWriter(store, metrics=metrics))
                await editor.delete(args.record_id)
                _print({"deleted": args.record_id})
                return 0
            view = DirectoryView()
            store.subscribe(view.on_snapshot)
            if args.command == "list":
                _print([record_to_json(record) for record in view.records])
                return 0
            if args.command == "search":
                found = view.search(args.term, by=args.by, city=args.city, search_all_map=args.all_map)
                _print(None if found is None else [record_to_json(record) for record in found])
                return 0
            if args.command == "last-location":
                location = initial_view(
                    memory,
                    default_center=GeoPoint(
                        lat=float(map_cfg.get("default_lat", 57.626)),
                        lng=float(map_cfg.get("default_lng", 39.897)),
                    ),
                    default_zoom=default_zoom,
                )
                _print({**location.point.to_dict(), "zoom": location.zoom})
                return 0
    except (ResolutionFailed, GatewayCallFailed, PersistenceRejected) as exc:
        LOGGER.warning("command_failed", command=args.command, reason=str(exc))
        print(user_message(exc), file=sys.stderr)
        return 1
    finally:
        metrics_dir = app_cfg.get("metrics_dir")
        if metrics_dir:
            metrics.export(path=Path(metrics_dir) / f"run_{run_id}.json", run_id=run_id)
    return 1


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path(args.settings))
    configure_logging(DEFAULT_LOGGING_PATH)
    code = asyncio.run(run_command(args, settings))
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
