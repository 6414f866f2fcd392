from __future__ import annotations

import argparse
import asyncio
import codecs
import json
import sys
from dataclasses import replace
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .config import PipelineConfig, TokenizationMethod
from .formats import FormatUnrecognizedError, captions_to_srt
from .furigana import format_ruby_text
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .models import SubtitleTrack, serialize_track
from .pipeline import CaptionPipeline
from .web import WebConfig, create_app

_TEXT_ENCODINGS = ("utf-8-sig", "cp932", "shift_jis", "euc_jp")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("jisub")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"jisub {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (analyzer initialization, fallbacks, cache hits).",
    )


def _add_tokenizer_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--tokenizer",
        choices=[method.value for method in TokenizationMethod],
        default=None,
        help="Analyzer chain to use (default: JISUB_TOKENIZER or 'auto').",
    )


def build_parse_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jisub parse",
        description="Parse an SRT/VTT/ASS file, assign lanes and annotate Japanese captions.",
    )
    _add_common_flags(ap)
    _add_tokenizer_flag(ap)
    ap.add_argument("input_path", help="Subtitle file to parse")
    ap.add_argument("--language", help="Track language (captions are only annotated for Japanese)")
    ap.add_argument("--title", help="Track title")
    ap.add_argument("--no-enrich", action="store_true", help="Skip tokenization and furigana")
    ap.add_argument("--json", action="store_true", help="Print the track as JSON instead of a table")
    return ap


def build_furigana_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jisub furigana",
        description="Print text with furigana readings in parentheses.",
    )
    _add_common_flags(ap)
    _add_tokenizer_flag(ap)
    ap.add_argument(
        "text",
        nargs="+",
        help="Japanese text to annotate. Wrap the phrase in quotes if it contains spaces.",
    )
    return ap


def build_srt_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jisub srt",
        description="Re-serialize any supported subtitle file as normalized SRT.",
    )
    _add_common_flags(ap)
    ap.add_argument("input_path", help="Subtitle file to convert")
    ap.add_argument("-o", "--output", help="Write to this path instead of stdout")
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jisub serve",
        description="Serve the furigana/tokenize/caption HTTP API.",
    )
    _add_common_flags(ap)
    _add_tokenizer_flag(ap)
    ap.add_argument("--host", default="127.0.0.1", help="Bind address (default: %(default)s)")
    ap.add_argument("--port", type=int, default=3000, help="Port (default: %(default)s)")
    return ap


def read_subtitle_file(path: Path) -> str:
    raw = path.read_bytes()
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return raw.decode("utf-16")
    for encoding in _TEXT_ENCODINGS:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="ignore")


def _pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_env()
    tokenizer = getattr(args, "tokenizer", None)
    if tokenizer:
        config = replace(config, tokenizer=TokenizationMethod(tokenizer))
    return config


def _format_seconds(value: float) -> str:
    minutes, seconds = divmod(value, 60)
    return f"{int(minutes):02d}:{seconds:06.3f}"


def _render_track(console: Console, track: SubtitleTrack) -> None:
    table = Table(title=f"{track.metadata.title} ({track.metadata.language})")
    table.add_column("#", justify="right")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Lane", justify="right")
    table.add_column("Text")
    table.add_column("Furigana")
    for index, caption in enumerate(track.captions, start=1):
        furigana = format_ruby_text(caption.furigana) if caption.furigana else ""
        table.add_row(
            str(index),
            _format_seconds(caption.start_time),
            _format_seconds(caption.end_time),
            str(caption.lane),
            caption.text,
            furigana,
        )
    console.print(table)


def _run_parse(args: argparse.Namespace) -> int:
    path = Path(args.input_path).expanduser()
    if not path.is_file():
        raise SystemExit(f"Input file not found: {path}")
    pipeline = CaptionPipeline(_pipeline_config(args))
    title = args.title or path.stem
    try:
        track = asyncio.run(
            pipeline.load_track(
                read_subtitle_file(path),
                args.language,
                title,
                enrich=not args.no_enrich,
            )
        )
    except FormatUnrecognizedError as exc:
        print(f"{path.name}: {exc}", file=sys.stderr)
        return 2
    if args.json:
        print(json.dumps(serialize_track(track), ensure_ascii=False, indent=2))
        return 0
    _render_track(Console(), track)
    return 0


def _run_furigana(args: argparse.Namespace) -> int:
    text = " ".join(args.text).strip()
    if not text:
        raise SystemExit("No text provided for furigana.")
    pipeline = CaptionPipeline(_pipeline_config(args))
    segments = asyncio.run(pipeline.furigana(text))
    print(format_ruby_text(segments))
    return 0


def _run_srt(args: argparse.Namespace) -> int:
    path = Path(args.input_path).expanduser()
    if not path.is_file():
        raise SystemExit(f"Input file not found: {path}")
    pipeline = CaptionPipeline(PipelineConfig.from_env())
    try:
        track = pipeline.parse_track(read_subtitle_file(path), title=path.stem)
    except FormatUnrecognizedError as exc:
        print(f"{path.name}: {exc}", file=sys.stderr)
        return 2
    content = captions_to_srt(track.captions)
    if args.output:
        Path(args.output).expanduser().write_text(content, encoding="utf-8")
    else:
        sys.stdout.write(content)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = WebConfig(host=args.host, port=args.port, pipeline=_pipeline_config(args))
    app = create_app(config)
    print(f"Serving jisub API on http://{args.host}:{args.port}/")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=args.host, port=args.port, log_config=build_uvicorn_log_config(args.debug))
    return 0


_COMMANDS = {
    "parse": (build_parse_parser, _run_parse),
    "furigana": (build_furigana_parser, _run_furigana),
    "srt": (build_srt_parser, _run_srt),
    "serve": (build_serve_parser, _run_serve),
}


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    if not argv or argv[0] not in _COMMANDS:
        if argv and argv[0] in {"-v", "--version"}:
            print(f"jisub {__version__}")
            return 0
        commands = ", ".join(_COMMANDS)
        print(f"usage: jisub {{{commands}}} ...", file=sys.stderr)
        return 2
    build, run = _COMMANDS[argv[0]]
    args = build().parse_args(argv[1:])
    set_debug_logging(bool(getattr(args, "debug", False)))
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
