import json

from replay_call import (
    format_transcript,
    main,
    parse_transcript_file,
    parse_transcript_lines,
)
from switchboard.transcript import chunk_transcript_dump


def _dump(session_id="CA_test", n_entries=2):
    return {
        "session_id": session_id,
        "phone": "+447700900123",
        "final_status": "finalized",
        "final_route": "VIDEO_QUOTE",
        "duration_s": 31.4,
        "entries": [
            {"t": float(i * 3), "role": "caller", "status": "streaming", "content": f"segment {i} " + "x" * 100}
            for i in range(n_entries)
        ],
    }


class TestParseTranscriptFile:
    def test_speaker_prefixes(self):
        text = "Agent: Handyman services\n\nCaller: My tap is dripping\nCustomer: and a shelf\njust text\n"
        assert parse_transcript_file(text) == [
            ("agent", "Handyman services"),
            ("caller", "My tap is dripping"),
            ("caller", "and a shelf"),
            ("caller", "just text"),
        ]

    def test_prefix_only_line_skipped(self):
        assert parse_transcript_file("Caller:   \n") == []


class TestParseTranscriptLines:
    def test_multi_chunk_reassembly(self):
        lines = [f"2026-10-19 INFO switchboard.monitor: {l}" for l in chunk_transcript_dump(_dump(n_entries=30), max_bytes=1000)]
        assert len(lines) > 1
        result = parse_transcript_lines(lines)
        assert len(result) == 1
        assert len(result[0]["entries"]) == 30

    def test_filter_by_session(self):
        lines = chunk_transcript_dump(_dump("CA_1")) + chunk_transcript_dump(_dump("CA_2"))
        result = parse_transcript_lines(lines, session_id="CA_1")
        assert [t["session_id"] for t in result] == ["CA_1"]

    def test_ignores_noise(self):
        assert parse_transcript_lines(["nothing here", "TRANSCRIPT_DUMP|x/y|{}"]) == []


class TestFormatTranscript:
    def test_header_and_gaps(self):
        text = format_transcript(_dump(), gap_threshold=2.0)
        lines = text.splitlines()
        assert lines[0] == "Call CA_test | +447700900123 | 31.4s | VIDEO_QUOTE"
        assert "      | +3.0s" in lines
        assert lines[-1].startswith("  3.0s Caller: segment 1")


class TestMain:
    def test_dump_command(self, tmp_path, capsys):
        log = tmp_path / "server.log"
        log.write_text("\n".join(chunk_transcript_dump(_dump())))
        assert main(["dump", str(log)]) == 0
        assert "Call CA_test" in capsys.readouterr().out

    def test_dump_missing_lines(self, tmp_path, capsys):
        log = tmp_path / "server.log"
        log.write_text("nothing\n")
        assert main(["dump", str(log)]) == 1

    def test_replay_command(self, tmp_path, capsys):
        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps({"items": [
            {"id": "sku-tv", "skuCode": "TV-MOUNT", "name": "TV Mounting", "keywords": ["tv", "mount"], "pricePence": 8500},
        ]}))
        transcript = tmp_path / "call.txt"
        transcript.write_text("Caller: Hi there\nCaller: can you mount my TV\n")
        assert main(["replay", str(transcript), "--catalog", str(catalog), "--session-id", "CA_replay"]) == 0
        out = capsys.readouterr().out
        assert "[closed] INSTANT_PRICE" in out
        assert "TV-MOUNT" in out

    def test_replay_missing_catalog(self, tmp_path):
        transcript = tmp_path / "call.txt"
        transcript.write_text("Caller: hi\n")
        assert main(["replay", str(transcript), "--catalog", str(tmp_path / "nope.json")]) == 1
