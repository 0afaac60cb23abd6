from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Union
from urllib.parse import unquote

from line_classifier import (
    AGENT_TURN,
    BLANK,
    CODE,
    DEFAULT_RULES,
    FENCE,
    NOISE,
    TOOL_ACTION,
    USER_TURN,
    ClassifierRules,
    classify_line,
)


logger = logging.getLogger(__name__)

# Segment kinds.
USER_PROMPT = "user_prompt"
AGENT_RESPONSE = "agent_response"
TOOL_ACTION_SEGMENT = "tool_action"
UNKNOWN = "unknown"

# Segmenter states.
STATE_UNKNOWN = "unknown"
STATE_USER_PROMPT = "in_user_prompt"
STATE_AGENT_RESPONSE = "in_agent_response"
STATE_TOOL_ACTION = "in_tool_action"

_STATE_FOR_KIND = {
    UNKNOWN: STATE_UNKNOWN,
    USER_PROMPT: STATE_USER_PROMPT,
    AGENT_RESPONSE: STATE_AGENT_RESPONSE,
    TOOL_ACTION_SEGMENT: STATE_TOOL_ACTION,
}

FILE_URL_RE = re.compile(r"file:///(.+?)[)#\s]")
MALFORMED_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
DEFAULT_PROJECT_ROOT_DEPTH = 4


class SessionParseError(RuntimeError):
    pass


@dataclass(frozen=True)
class Segment:
    kind: str
    body: tuple[str, ...]

    @property
    def text(self) -> str:
        return "\n".join(self.body)


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ActionRef:
    index: int


BodyPart = Union[TextChunk, ActionRef]


@dataclass(frozen=True)
class FusedResponse:
    body: tuple[BodyPart, ...]
    actions: tuple[Segment, ...]
    kind: str = AGENT_RESPONSE


@dataclass(frozen=True)
class MergedTurn:
    """One user prompt plus the fused agent reply that followed it.

    The orphan turn (content before the first user prompt) has no prompt and
    carries its segments untouched in ``passthrough``.
    """

    prompt: Segment | None
    response: FusedResponse | None = None
    passthrough: tuple[Segment, ...] = ()

    @property
    def is_orphan(self) -> bool:
        return self.prompt is None


def detect_user_identifier(content: str, rules: ClassifierRules = DEFAULT_RULES) -> str | None:
    lines = content.split("\n")

    last_agent_idx = -1
    for idx, raw in enumerate(lines):
        if raw.strip().startswith(rules.agent_prefix):
            last_agent_idx = idx
    if last_agent_idx < 0:
        return None

    for idx in range(last_agent_idx):
        line = lines[idx].strip()
        if line.startswith(rules.agent_prefix):
            continue
        match = rules.user_identifier_re.search(line)
        if match:
            return match.group(1)
    return None


def require_user_identifier(content: str, rules: ClassifierRules = DEFAULT_RULES) -> str:
    identifier = detect_user_identifier(content, rules)
    if not identifier:
        raise SessionParseError(
            "could not detect user identifier in the input. "
            'Expected "username: <content>" lines followed later by '
            f'"{rules.agent_prefix}" agent turns.'
        )
    return identifier


def safe_decode_path(path: str) -> str:
    """Percent-decode a file path, or return it unchanged if any escape is bad."""
    if MALFORMED_ESCAPE_RE.search(path):
        logger.warning("Failed to decode path, keeping it as-is: %s", path)
        return path
    try:
        return unquote(path, errors="strict")
    except UnicodeDecodeError:
        logger.warning("Failed to decode path, keeping it as-is: %s", path)
        return path


def detect_project_root(content: str, depth: int = DEFAULT_PROJECT_ROOT_DEPTH) -> str | None:
    match = FILE_URL_RE.search(content)
    if not match:
        return None

    full_path = match.group(1)
    if not full_path.startswith("/"):
        full_path = "/" + full_path
    full_path = safe_decode_path(full_path)

    parts = [p for p in full_path.split("/") if p]
    if len(parts) < depth:
        return None
    return "/" + "/".join(parts[:depth])


class Segmenter:
    """Single forward pass turning transcript lines into typed segments.

    Feed lines with ``consume`` and call ``finish`` once; the closed segments
    accumulate in ``segments``.
    """

    def __init__(self, user_identifier: str, rules: ClassifierRules = DEFAULT_RULES) -> None:
        self.user_identifier = user_identifier
        self.rules = rules
        self.state = STATE_UNKNOWN
        self.in_fence = False
        self.segments: list[Segment] = []
        self._kind = UNKNOWN
        self._body: list[str] = []
        self._actions: list[str] = []
        self._finished = False

    def _emit(self) -> None:
        if self._kind == TOOL_ACTION_SEGMENT:
            # Pending actions are kept when a speaker opener or end of input
            # closes the run; they are not discarded.
            if self._actions:
                self.segments.append(Segment(TOOL_ACTION_SEGMENT, tuple(self._actions)))
        elif self._body:
            self.segments.append(Segment(self._kind, tuple(self._body)))
        self._body = []
        self._actions = []

    def _open(self, kind: str, first_line: str | None = None) -> None:
        self._emit()
        self._kind = kind
        self.state = _STATE_FOR_KIND[kind]
        if first_line is not None:
            self._body.append(first_line)

    def consume(self, line: str) -> None:
        if self._finished:
            raise RuntimeError("segmenter already finished")

        label = classify_line(line, self.user_identifier, self.in_fence, self.rules)
        if label.kind == NOISE:
            return

        if label.kind == FENCE:
            self.in_fence = not self.in_fence
            if self.state == STATE_TOOL_ACTION:
                self._open(AGENT_RESPONSE)
            self._body.append(line)
            return

        if label.kind == CODE:
            self._body.append(line)
            return

        if label.kind == USER_TURN:
            self._open(USER_PROMPT, label.payload)
            return

        if label.kind == AGENT_TURN:
            self._open(AGENT_RESPONSE, label.payload)
            return

        if self.state == STATE_TOOL_ACTION:
            if label.kind == TOOL_ACTION:
                self._actions.append(line)
            elif label.kind != BLANK:
                self._open(AGENT_RESPONSE, line)
            return

        if label.kind == TOOL_ACTION:
            self._open(TOOL_ACTION_SEGMENT)
            self._actions.append(line)
            return

        self._body.append(line)

    def finish(self) -> list[Segment]:
        if not self._finished:
            self._emit()
            self._finished = True
        return self.segments


def parse_segments(
    content: str,
    user_identifier: str,
    rules: ClassifierRules = DEFAULT_RULES,
) -> list[Segment]:
    segmenter = Segmenter(user_identifier, rules)
    for line in content.split("\n"):
        segmenter.consume(line)
    return segmenter.finish()


def _flush_pending(
    merged: list[MergedTurn],
    prompt: Segment,
    content: list[BodyPart],
    actions: list[Segment],
) -> None:
    if content or actions:
        response = FusedResponse(body=tuple(content), actions=tuple(actions))
        merged.append(MergedTurn(prompt=prompt, response=response))
    else:
        merged.append(MergedTurn(prompt=prompt))
    content.clear()
    actions.clear()


def merge_segments(segments: list[Segment]) -> list[MergedTurn]:
    merged: list[MergedTurn] = []
    orphans: list[Segment] = []
    prompt: Segment | None = None
    pending_content: list[BodyPart] = []
    pending_actions: list[Segment] = []

    for segment in segments:
        if segment.kind == USER_PROMPT:
            if prompt is not None:
                _flush_pending(merged, prompt, pending_content, pending_actions)
            elif orphans:
                merged.append(MergedTurn(prompt=None, passthrough=tuple(orphans)))
                orphans = []
            prompt = segment
            continue

        if prompt is None:
            orphans.append(segment)
            continue

        if segment.kind == TOOL_ACTION_SEGMENT:
            pending_content.append(ActionRef(len(pending_actions)))
            pending_actions.append(segment)
        else:
            pending_content.append(TextChunk(segment.text))

    if prompt is not None:
        _flush_pending(merged, prompt, pending_content, pending_actions)
    elif orphans:
        merged.append(MergedTurn(prompt=None, passthrough=tuple(orphans)))

    return merged
