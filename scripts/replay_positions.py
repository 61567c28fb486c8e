#!/usr/bin/env python3
"""Replay a JSON-lines position file through the fleetsense pipeline.

Each line is one raw tracker payload (the same shapes accepted over
MQTT). The script ingests every line, segments trips, learns locations
and scores each day that has data, then prints what came out.

Usage
-----
::

    pip install -e .
    export FLEETSENSE_TIMEZONE="Europe/Amsterdam"
    python scripts/replay_positions.py positions.jsonl

Options::

    --vehicle VEH-1      Only report this vehicle (default: all vehicles)
    --json               Output as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --skip-health        Do not compute daily health
    --verbose            Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

from fleetsense import InsightPipeline, PipelineConfig

_LOG = logging.getLogger("replay_positions")


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _read_payloads(path: Path) -> list[dict[str, Any]]:
    payloads: list[dict[str, Any]] = []
    with path.open(encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                item = json.loads(text)
            except json.JSONDecodeError:
                _LOG.warning("Skipping line %d: not JSON", lineno)
                continue
            if not isinstance(item, dict):
                _LOG.warning("Skipping line %d: not an object", lineno)
                continue
            payloads.append(item)
    return payloads


async def _replay(args: argparse.Namespace) -> dict[str, Any]:
    payloads = _read_payloads(Path(args.path))
    config = PipelineConfig.from_env()
    result: dict[str, Any] = {"payloads": len(payloads), "vehicles": []}

    async with InsightPipeline(config) as pipeline:
        events = await pipeline.ingest_batch(payloads)
        result["events_created"] = len(events)

        vehicle_ids = [args.vehicle] if args.vehicle else pipeline.timeline.vehicle_ids()
        days: set[date] = set()
        for vehicle_id in vehicle_ids:
            trips = await pipeline.segment_trips(vehicle_id)
            locations = await pipeline.learn_locations(vehicle_id)
            days.update(s.timestamp.astimezone(config.tzinfo).date() for s in pipeline.timeline.range(vehicle_id))
            result["vehicles"].append(
                {
                    "vehicle_id": vehicle_id,
                    "samples": pipeline.timeline.count(vehicle_id),
                    "events": [e.model_dump(mode="json") for e in pipeline.store.query_events(vehicle_id)],
                    "trips": [t.model_dump(mode="json") for t in trips],
                    "locations": [loc.model_dump(mode="json") for loc in locations],
                }
            )

        if not args.skip_health:
            health: list[dict[str, Any]] = []
            for day in sorted(days):
                sweep = await pipeline.run_daily_health(day, vehicle_ids=vehicle_ids)
                health.extend(r.model_dump(mode="json") for r in sweep)
            result["health"] = health

    return result


def _render_text(result: dict[str, Any]) -> str:
    out: list[str] = [_section("fleetsense replay")]
    out.append(f"  payloads  : {result['payloads']}")
    out.append(f"  events    : {result['events_created']}")

    for vehicle in result["vehicles"]:
        out.append(_section(f"Vehicle {vehicle['vehicle_id']}"))
        out.append(f"  samples   : {vehicle['samples']}")
        for event in vehicle["events"]:
            out.append(f"  event     : {event['created_at']} {event['severity']:<8} {event['event_type']}")
        for trip in vehicle["trips"]:
            out.append(
                f"  trip      : {trip['start_time']} -> {trip['end_time']} "
                f"{trip['distance_km']:.2f} km [{trip['source_method']}]"
            )
        for location in vehicle["locations"]:
            centroid = location["centroid"]
            out.append(
                f"  location  : ({centroid['latitude']:.5f}, {centroid['longitude']:.5f}) "
                f"{location['location_type']} visits={location['visit_count']}"
            )

    if "health" in result:
        out.append(_section("DAILY HEALTH"))
        for row in result["health"]:
            if row["status"] == "success":
                out.append(
                    f"  {row['day']} {row['vehicle_id']}: health={row['health_score']} "
                    f"confidence={row['confidence_score']}"
                )
            else:
                out.append(f"  {row['day']} {row['vehicle_id']}: failed ({row['error']})")
    return "\n".join(out)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Replay a JSON-lines position file through the fleetsense pipeline.",
    )
    parser.add_argument("path", help="JSON-lines file, one position payload per line")
    parser.add_argument("--vehicle", help="Only report this vehicle (default: all vehicles)")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--skip-health", action="store_true", help="Do not compute daily health")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if not Path(args.path).is_file():
        raise SystemExit(f"No such file: {args.path}")

    result = asyncio.run(_replay(args))
    text = json.dumps(result, indent=2) if args.json_mode else _render_text(result)

    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Output written to {args.output}", file=sys.stderr)
    else:
        print(text)


if __name__ == "__main__":
    main()
