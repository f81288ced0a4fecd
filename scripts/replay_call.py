#!/usr/bin/env python3
"""Replay a call transcript through the live analysis pipeline, offline.

Usage:
    python scripts/replay_call.py replay call.txt --catalog catalog.json
    python scripts/replay_call.py replay call.txt --catalog catalog.json --openai
    python scripts/replay_call.py replay call.txt --catalog catalog.json --delay 0.5 --raw
    python scripts/replay_call.py dump server.log                 # last call, human-readable
    python scripts/replay_call.py dump server.log --session-id CA...

Transcript files hold one segment per line, optionally prefixed with
"Caller:" or "Agent:". The dump command reads TRANSCRIPT_DUMP lines logged
when a session closes.
"""

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

from switchboard.catalog import CatalogCache, load_catalog_file, static_loader
from switchboard.config import load_settings
from switchboard.events import ANALYSIS_UPDATED, SESSION_CLOSED, EventBus, SessionEvent
from switchboard.pipeline import Services, create_monitor
from switchboard.providers import OpenAIProvider
from switchboard.transcript import to_plain_text

SPEAKER_PREFIXES = {
    "caller:": "caller",
    "customer:": "caller",
    "agent:": "agent",
}


def parse_transcript_file(text: str) -> list[tuple[str, str]]:
    """Split a transcript file into (speaker, text) segments, skipping blank lines."""
    segments = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        speaker = "caller"
        lower = line.lower()
        for prefix, name in SPEAKER_PREFIXES.items():
            if lower.startswith(prefix):
                speaker = name
                line = line[len(prefix):].strip()
                break
        if line:
            segments.append((speaker, line))
    return segments


def parse_transcript_lines(lines: list[str], session_id: str | None = None) -> list[dict]:
    """Parse TRANSCRIPT_DUMP lines from log output into transcript dicts.

    Handles multi-chunk reassembly. Returns list of complete transcripts
    (most recent last). If session_id is given, filters to that call only.
    """
    chunk_groups: dict[int, dict[int, str]] = {}
    group_counter = 0

    for line in lines:
        if "TRANSCRIPT_DUMP|" not in line:
            continue
        parts = line[line.index("TRANSCRIPT_DUMP|"):].split("|", 2)
        if len(parts) < 3:
            continue
        try:
            chunk_num, total = (int(p) for p in parts[1].split("/"))
        except ValueError:
            continue

        if chunk_num == 1:
            group_counter += 1
        chunk_groups.setdefault(group_counter, {})[chunk_num] = parts[2]

    transcripts = []
    for group_id in sorted(chunk_groups):
        chunks = chunk_groups[group_id]
        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue
        if session_id and first.get("session_id") != session_id:
            continue

        entries = list(first.get("entries", []))
        for i in sorted(chunks):
            if i == 1:
                continue
            try:
                entries.extend(json.loads(chunks[i]).get("entries", []))
            except json.JSONDecodeError:
                continue
        first["entries"] = entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Format a transcript dict into human-readable output with gap annotations."""
    sid = transcript.get("session_id", "unknown")
    phone = transcript.get("phone", "unknown")
    duration = transcript.get("duration_s", 0)
    route = transcript.get("final_route", "unknown")
    lines = [f"Call {sid} | {phone} | {duration}s | {route}", "=" * 55, ""]

    prev_t = None
    for entry in transcript.get("entries", []):
        t = entry.get("t", 0.0)
        if prev_t is not None and t - prev_t >= gap_threshold:
            lines.append(f"      | +{t - prev_t:.1f}s")
        speaker = "Agent" if entry.get("role") == "agent" else "Caller"
        lines.append(f"{t:5.1f}s {speaker}: {entry.get('content', '')}")
        prev_t = t

    return "\n".join(lines)


def format_event(event: SessionEvent) -> str:
    payload = event.payload
    if event.type == ANALYSIS_UPDATED:
        decision = payload["aggregate_decision"]
        lines = [
            f"[pass {payload['pass_id']} tier {payload['tier']}] "
            f"{decision['next_route']} total={decision['total_matched_price_pence']}p "
            f"recommend={payload['recommendation']['route']}"
        ]
        for entry in payload["per_task_results"]:
            detection = entry["detection"]
            sku = detection["item"]["code"] if detection["item"] else "-"
            light = entry["complexity"]["traffic_light"] if entry.get("complexity") else "?"
            lines.append(
                f"    {entry['task']['description'][:50]:<50} {sku:<14} "
                f"{detection['method']:<9} {detection['next_route']:<13} {light}"
            )
        return "\n".join(lines)
    if event.type == SESSION_CLOSED:
        return (
            f"[closed] {payload['final_decision']['next_route']} metadata={payload['metadata']}\n"
            f"{to_plain_text(payload['segments'])}"
        )
    return f"[{event.type}] {payload.get('text', '')}"


async def replay(args) -> int:
    items = load_catalog_file(args.catalog)
    settings = load_settings()
    provider = None
    if args.openai:
        if not settings.openai_api_key:
            print("Error: --openai needs OPENAI_API_KEY", file=sys.stderr)
            return 1
        provider = OpenAIProvider(api_key=settings.openai_api_key)
    services = Services(
        settings=settings,
        catalog=CatalogCache(static_loader(items)),
        provider=provider,
    )

    bus = EventBus()
    if args.raw:
        bus.subscribe(lambda e: print(json.dumps(e.to_dict())))
    else:
        bus.subscribe(lambda e: print(format_event(e)))

    with open(args.transcript) as f:
        segments = parse_transcript_file(f.read())

    monitor = create_monitor(services, phone_number=args.phone, session_id=args.session_id, bus=bus)
    try:
        await monitor.start()
        for speaker, text in segments:
            await monitor.on_segment(text, speaker=speaker)
            if args.delay:
                await asyncio.sleep(args.delay)
        await monitor.close()
    finally:
        await services.close()
    return 0


def dump(args) -> int:
    with open(args.log) as f:
        transcripts = parse_transcript_lines(f.read().splitlines(), session_id=args.session_id)
    if not transcripts:
        print("No TRANSCRIPT_DUMP lines found", file=sys.stderr)
        return 1
    transcript = transcripts[-1]
    if args.raw:
        print(json.dumps(transcript, indent=2))
    else:
        print(format_transcript(transcript, gap_threshold=args.gap_threshold))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay calls through live analysis")
    sub = parser.add_subparsers(dest="command", required=True)

    rp = sub.add_parser("replay", help="Feed a transcript file through a session")
    rp.add_argument("transcript", help="Transcript file, one segment per line")
    rp.add_argument("--catalog", required=True, help="Catalog JSON file")
    rp.add_argument("--openai", action="store_true", help="Use OpenAI tiers (needs OPENAI_API_KEY)")
    rp.add_argument("--delay", type=float, default=0.0, help="Seconds between segments (default: 0)")
    rp.add_argument("--phone", default="", help="Caller phone number")
    rp.add_argument("--session-id", default=None, help="Session id to use")
    rp.add_argument("--raw", action="store_true", help="Print raw JSON events")

    dp = sub.add_parser("dump", help="Print a transcript from TRANSCRIPT_DUMP log lines")
    dp.add_argument("log", help="Log file to read")
    dp.add_argument("--session-id", default=None, help="Filter by session id")
    dp.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    dp.add_argument("--raw", action="store_true", help="Output raw JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    if args.command == "replay":
        if not os.path.exists(args.catalog):
            print(f"Error: catalog file not found: {args.catalog}", file=sys.stderr)
            return 1
        return asyncio.run(replay(args))
    return dump(args)


if __name__ == "__main__":
    sys.exit(main())
