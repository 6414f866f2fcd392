from __future__ import annotations

import json

from jisub import cli

SRT = """2
00:00:05,000 --> 00:00:06,000
後

1
00:00:01,000 --> 00:00:02,000
前
"""


def test_srt_command_normalizes_file(tmp_path, capsys) -> None:
    source = tmp_path / "episode.srt"
    source.write_text(SRT, encoding="utf-8")

    assert cli.main(["srt", str(source)]) == 0

    out = capsys.readouterr().out
    assert out.startswith("1\n00:00:01,000 --> 00:00:02,000\n前\n\n2\n00:00:05,000 --> 00:00:06,000\n後\n")


def test_srt_command_writes_output_file(tmp_path) -> None:
    source = tmp_path / "episode.vtt"
    source.write_text("WEBVTT\n\n00:01.000 --> 00:02.500\nこんにちは\n", encoding="utf-8")
    target = tmp_path / "out.srt"

    assert cli.main(["srt", str(source), "-o", str(target)]) == 0

    assert target.read_text(encoding="utf-8") == "1\n00:00:01,000 --> 00:00:02,500\nこんにちは\n"


def test_parse_command_json_without_enrichment(tmp_path, capsys) -> None:
    source = tmp_path / "episode.srt"
    source.write_bytes(SRT.encode("cp932"))

    assert cli.main(["parse", str(source), "--no-enrich", "--json", "--language", "ja"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["title"] == "episode"
    assert [c["text"] for c in payload["captions"]] == ["前", "後"]


def test_unrecognized_file_returns_error_code(tmp_path, capsys) -> None:
    source = tmp_path / "notes.txt"
    source.write_text("nothing to see", encoding="utf-8")

    assert cli.main(["srt", str(source)]) == 2
    assert "notes.txt" in capsys.readouterr().err


def test_furigana_command_with_simple_tokenizer(capsys) -> None:
    assert cli.main(["furigana", "--tokenizer", "simple", "hello"]) == 0
    assert capsys.readouterr().out.strip() == "hello"


def test_unknown_command_prints_usage(capsys) -> None:
    assert cli.main([]) == 2
    assert "usage: jisub" in capsys.readouterr().err


def test_unknown_tokenizer_setting_does_not_break_srt(tmp_path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("JISUB_TOKENIZER", "janome")
    source = tmp_path / "episode.srt"
    source.write_text(SRT, encoding="utf-8")

    assert cli.main(["srt", str(source)]) == 0
    assert capsys.readouterr().out.startswith("1\n00:00:01,000 --> 00:00:02,000\n前\n")
