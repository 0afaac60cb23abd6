#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from config import DEFAULT_CONFIG_NAME, ConfigError, load_config, write_default_config
from formatter import FormatterSettings, SessionAnalysis, analyze_content, process_content
from io_utils import FileAccessError, read_stream, read_text_file, stdin_is_piped, write_text_file
from session_parser import SessionParseError


logger = logging.getLogger("chat_session_format")

STDIN_SOURCE = "stdin"


def die(msg: str, code: int = 1) -> None:
    print(f"Error: {msg}", file=sys.stderr)
    raise SystemExit(code)


def configure_logging(args: argparse.Namespace, pipe_mode: bool = False) -> None:
    level = logging.INFO
    if getattr(args, "quiet", False) or pipe_mode:
        level = logging.WARNING
    if getattr(args, "verbose", False):
        level = logging.DEBUG

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


def load_settings(args: argparse.Namespace) -> FormatterSettings:
    config, config_path = load_config(args.config)
    if config_path is not None:
        logger.debug("Loaded config: %s", config_path)
    return FormatterSettings.from_config(config)


def _uses_stdin(input_arg: str | None) -> bool:
    return input_arg in (None, "-")


def _read_input(input_arg: str | None) -> tuple[str, str]:
    if _uses_stdin(input_arg):
        if not stdin_is_piped():
            die("no input file given and nothing piped on stdin (see --help)")
        return read_stream(), STDIN_SOURCE
    path = Path(str(input_arg)).expanduser().resolve()
    return read_text_file(path), path.name


def cmd_format(args: argparse.Namespace) -> None:
    pipe_mode = _uses_stdin(args.input)
    configure_logging(args, pipe_mode=pipe_mode)
    settings = load_settings(args)

    content, source_name = _read_input(args.input)
    result = process_content(content, force=args.force, source_file=source_name, settings=settings)

    if pipe_mode and not args.output:
        sys.stdout.write(result.content)
        sys.stdout.flush()
        return

    if result.skipped:
        # leave the file untouched
        return

    output = args.output or args.input
    saved = write_text_file(Path(output).expanduser().resolve(), result.content)
    logger.info("Formatted file saved: %s", saved)


def _stats_payload(analysis: SessionAnalysis, source: str) -> dict[str, Any]:
    return {
        "source": source,
        "user_identifier": analysis.user_identifier,
        "project_root": analysis.project_root,
        **analysis.stats.as_dict(),
    }


def _render_stats_text(payload: dict[str, Any]) -> str:
    lines: list[str] = []
    lines.append(f"Source: {payload['source']}")
    lines.append(f"User identifier: {payload['user_identifier']}")
    lines.append(f"Project root: {payload['project_root'] or 'None'}")
    lines.append("")
    lines.append(
        "Segments: "
        f"raw={payload['raw_segments']} "
        f"turns={payload['merged_turns']}"
    )
    lines.append(f"  user prompts={payload['user_prompts']}")
    lines.append(f"  agent responses={payload['agent_responses']}")
    lines.append(
        f"  action sequences={payload['action_sequences']} "
        f"(lines={payload['action_lines']})"
    )
    return "\n".join(lines)


def cmd_stats(args: argparse.Namespace) -> None:
    configure_logging(args, pipe_mode=True)
    settings = load_settings(args)

    content, source_name = _read_input(args.input)
    analysis = analyze_content(content, settings)
    payload = _stats_payload(analysis, source_name)

    if args.format == "json":
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    print(_render_stats_text(payload))


def cmd_init_config(args: argparse.Namespace) -> None:
    configure_logging(args)
    target = Path(args.path).expanduser().resolve()
    written = write_default_config(target, force=args.force)
    logger.info("Default config written: %s", written)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-session-format",
        description="Format a raw chat session transcript into a structured Markdown document.",
        epilog="Pipe mode: cat session.md | chat-session-format format > formatted.md",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", help=f"Config path override (default: ./{DEFAULT_CONFIG_NAME} if present)")
        noise = p.add_mutually_exclusive_group()
        noise.add_argument("-q", "--quiet", action="store_true", help="Only report warnings and errors")
        noise.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    p_format = sub.add_parser("format", help="Format a chat session file (or stdin)")
    add_common(p_format)
    p_format.add_argument("input", nargs="?", help="Raw session file; omit or use - to read stdin")
    p_format.add_argument("output", nargs="?", help="Output file (default: overwrite input, or stdout when piping)")
    p_format.add_argument("--force", action="store_true", help="Reprocess even if already formatted")
    p_format.set_defaults(fn=cmd_format)

    p_stats = sub.add_parser("stats", help="Report segment statistics without writing anything")
    add_common(p_stats)
    p_stats.add_argument("input", nargs="?", help="Raw session file; omit or use - to read stdin")
    p_stats.add_argument("--format", choices=["text", "json"], default="text")
    p_stats.set_defaults(fn=cmd_stats)

    p_init = sub.add_parser("init-config", help="Write the default TOML configuration")
    p_init.add_argument("path", nargs="?", default=DEFAULT_CONFIG_NAME)
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_init.set_defaults(fn=cmd_init_config)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        args.fn(args)
    except (ConfigError, SessionParseError, FileAccessError) as exc:
        die(str(exc))


if __name__ == "__main__":
    main()
