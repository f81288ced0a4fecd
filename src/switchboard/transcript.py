import json

SPEAKER_LABELS = {
    "caller": "Caller",
    "agent": "Agent",
}


def to_plain_text(log: list[dict]) -> str:
    """Convert a segment log to plain text, one "Speaker: text" line per segment."""
    if not log:
        return ""

    lines = []
    for entry in log:
        role = entry.get("role", "")
        label = SPEAKER_LABELS.get(role, role.capitalize() or "Unknown")
        lines.append(f"{label}: {entry['content']}")
    return "\n".join(lines)


def to_json_array(log: list[dict]) -> list[dict]:
    """Segment log as a list of {role, content} dicts."""
    if not log:
        return []
    return [{"role": entry.get("role", ""), "content": entry["content"]} for entry in log]


def to_timestamped_dump(
    log: list[dict],
    start_time: float,
    session_id: str,
    phone: str,
    final_status: str,
    final_route: str = "",
) -> dict:
    """Segment log as a dict for the closing TRANSCRIPT_DUMP log lines.

    Each entry carries ``t``, seconds since the session started (or since the
    first timestamped segment when ``start_time`` is unset), and the session
    status at the moment the segment arrived. Untimed entries are dropped.
    """
    base_time = start_time
    if base_time <= 0 and log:
        for entry in log:
            if "timestamp" in entry:
                base_time = entry["timestamp"]
                break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        entries.append({
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry.get("role", ""),
            "status": entry.get("status", ""),
            "content": entry.get("content", ""),
        })

    return {
        "session_id": session_id,
        "phone": phone,
        "final_status": final_status,
        "final_route": final_route,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into chunks that fit within log line limits.

    Each chunk is a string: TRANSCRIPT_DUMP|N/M|{json}
    The first chunk carries the header fields, later chunks only entries.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    if not entries:
        return [f"TRANSCRIPT_DUMP|1/1|{json.dumps({**header, 'entries': []})}"]

    groups: list[list[dict]] = []
    current: list[dict] = []
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))

    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2  # separator overhead
        if current and size + entry_size > max_bytes:
            groups.append(current)
            current = []
            size = len(json.dumps({"entries": []}).encode("utf-8"))
        current.append(entry)
        size += entry_size
    groups.append(current)

    total = len(groups)
    lines = []
    for i, group in enumerate(groups):
        body = {**header, "entries": group} if i == 0 else {"entries": group}
        lines.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{json.dumps(body)}")
    return lines
