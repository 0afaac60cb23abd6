from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from config import DEFAULT_CONFIG
from line_classifier import ClassifierRules
from renderer import RenderTemplates, render_frontmatter, render_turn
from session_parser import (
    TOOL_ACTION_SEGMENT,
    MergedTurn,
    Segment,
    detect_project_root,
    merge_segments,
    parse_segments,
    require_user_identifier,
)
from transforms import compact_blank_lines, compose, ensure_markdown_spacing, remove_trailing_spaces


logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"\A---\n.*?\n---\n", re.DOTALL)

finalize_document = compose(
    remove_trailing_spaces,
    compact_blank_lines,
    ensure_markdown_spacing,
)


@dataclass(frozen=True)
class FormatterSettings:
    rules: ClassifierRules
    templates: RenderTemplates
    project_root_depth: int

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "FormatterSettings":
        return cls(
            rules=ClassifierRules.from_config(config),
            templates=RenderTemplates.from_config(config),
            project_root_depth=int(config["paths"]["project_root_depth"]),
        )


DEFAULT_SETTINGS = FormatterSettings.from_config(DEFAULT_CONFIG)


@dataclass
class SessionStats:
    raw_segments: int = 0
    merged_turns: int = 0
    user_prompts: int = 0
    agent_responses: int = 0
    action_sequences: int = 0
    action_lines: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "raw_segments": self.raw_segments,
            "merged_turns": self.merged_turns,
            "user_prompts": self.user_prompts,
            "agent_responses": self.agent_responses,
            "action_sequences": self.action_sequences,
            "action_lines": self.action_lines,
        }


@dataclass
class SessionAnalysis:
    user_identifier: str
    project_root: str | None
    segments: list[Segment]
    turns: list[MergedTurn]
    stats: SessionStats = field(default_factory=SessionStats)


@dataclass
class FormatResult:
    content: str
    skipped: bool
    analysis: SessionAnalysis | None = None


def is_already_processed(content: str, settings: FormatterSettings = DEFAULT_SETTINGS) -> bool:
    return settings.templates.processed_marker in content


def strip_frontmatter(content: str, settings: FormatterSettings = DEFAULT_SETTINGS) -> str:
    """Drop a leading ``---`` block plus the processed marker that follows it."""
    stripped = FRONTMATTER_RE.sub("", content, count=1)
    if stripped == content:
        return content
    marker = settings.templates.processed_marker
    if stripped.startswith(marker):
        stripped = stripped[len(marker):]
    return stripped.lstrip("\n")


def processed_timestamp(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def collect_stats(segments: list[Segment], turns: list[MergedTurn]) -> SessionStats:
    stats = SessionStats(raw_segments=len(segments), merged_turns=len(turns))
    for turn in turns:
        if turn.prompt is not None:
            stats.user_prompts += 1
        actions: list[Segment] = []
        if turn.response is not None:
            stats.agent_responses += 1
            actions.extend(turn.response.actions)
        actions.extend(s for s in turn.passthrough if s.kind == TOOL_ACTION_SEGMENT)
        stats.action_sequences += len(actions)
        stats.action_lines += sum(len(a.body) for a in actions)
    return stats


def analyze_content(content: str, settings: FormatterSettings = DEFAULT_SETTINGS) -> SessionAnalysis:
    project_root = detect_project_root(content, settings.project_root_depth)
    logger.info("Detected project root: %s", project_root or "None")

    user_identifier = require_user_identifier(content, settings.rules)
    logger.info("Detected user identifier: %s", user_identifier)

    segments = parse_segments(content, user_identifier, settings.rules)
    logger.info("Found %d sections (raw)", len(segments))

    turns = merge_segments(segments)
    stats = collect_stats(segments, turns)
    logger.info("After merge: %d turns", stats.merged_turns)
    logger.info(
        "%d user prompts, %d agent responses, %d action sequences",
        stats.user_prompts,
        stats.agent_responses,
        stats.action_sequences,
    )
    return SessionAnalysis(
        user_identifier=user_identifier,
        project_root=project_root,
        segments=segments,
        turns=turns,
        stats=stats,
    )


def render_document(
    analysis: SessionAnalysis,
    source_file: str,
    processed_date: str,
    settings: FormatterSettings = DEFAULT_SETTINGS,
) -> str:
    frontmatter = render_frontmatter(
        analysis.project_root, source_file, processed_date, settings.templates
    )
    body = "".join(
        render_turn(turn, analysis.project_root, settings.rules, settings.templates)
        for turn in analysis.turns
    )
    return finalize_document(frontmatter + body)


def process_content(
    content: str,
    force: bool = False,
    source_file: str = "stdin",
    processed_date: str | None = None,
    settings: FormatterSettings = DEFAULT_SETTINGS,
) -> FormatResult:
    if is_already_processed(content, settings):
        if not force:
            logger.warning("Input already processed. Use --force to reprocess.")
            return FormatResult(content=content, skipped=True)
        content = strip_frontmatter(content, settings)
        logger.info("Forced reprocessing: existing frontmatter removed.")

    analysis = analyze_content(content, settings)
    logger.info("Formatting content...")
    document = render_document(
        analysis,
        source_file=source_file,
        processed_date=processed_date or processed_timestamp(),
        settings=settings,
    )
    return FormatResult(content=document, skipped=False, analysis=analysis)
