from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from config import DEFAULT_CONFIG
from line_classifier import DEFAULT_RULES, ClassifierRules, match_terminal_command
from session_parser import (
    AGENT_RESPONSE,
    TOOL_ACTION_SEGMENT,
    USER_PROMPT,
    ActionRef,
    FusedResponse,
    MergedTurn,
    Segment,
    safe_decode_path,
)
from transforms import Transform, compose, force_line_breaks, scan_lines, shift_heading_levels


NOT_AVAILABLE = "N/A"
ACTION_LINK_RE = re.compile(r"(\w+) \[\]\((file:///[^)#\s]+)")
CONTEXT_REF_RE = re.compile(r"#(file|folder|dir|sym):(\S+)|#(selection)\b")

CONTEXT_REF_EMOJI = {
    "file": "📄",
    "folder": "📁",
    "dir": "📁",
    "sym": "🔣",
}
SELECTION_REF = "`🔎 selection`"
FALLBACK_REF_EMOJI = "📎"


@dataclass(frozen=True)
class RenderTemplates:
    processed_marker: str
    user_prompt_marker: str
    agent_response_marker: str
    agent_action_marker: str
    user_prompt_heading: str
    agent_response_heading: str
    action_open: str
    action_close: str
    terminal_label: str

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "RenderTemplates":
        markers = config["markers"]
        visual = config["visual"]
        return cls(
            processed_marker=str(markers["processed"]),
            user_prompt_marker=str(markers["user_prompt"]),
            agent_response_marker=str(markers["agent_response"]),
            agent_action_marker=str(markers["agent_action"]),
            user_prompt_heading=str(visual["user_prompt"]),
            agent_response_heading=str(visual["agent_response"]),
            action_open=str(visual["agent_action"]),
            action_close=str(visual["agent_action_end"]),
            terminal_label=str(visual["terminal_label"]),
        )


DEFAULT_TEMPLATES = RenderTemplates.from_config(DEFAULT_CONFIG)


def extract_filename(path: str) -> str:
    clean = re.split(r"[#?]", path, maxsplit=1)[0]
    return clean.rsplit("/", 1)[-1] or path


def simplify_action_paths(action: str, project_root: str | None) -> str:
    """Rewrite ``Read [](file:///abs/path)`` links to ``Read [name](/rel/path)``."""
    if not project_root:
        return action

    def _replace(match: re.Match[str]) -> str:
        action_type, file_url = match.group(1), match.group(2)
        path = file_url[len("file:///"):]
        if not path.startswith("/"):
            path = "/" + path
        path = safe_decode_path(path)
        simplified = path[len(project_root):] if path.startswith(project_root) else path
        return f"{action_type} [{extract_filename(path)}]({simplified}"

    return ACTION_LINK_RE.sub(_replace, action)


def format_context_references(text: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        if match.group(3):
            return SELECTION_REF
        emoji = CONTEXT_REF_EMOJI.get(match.group(1), FALLBACK_REF_EMOJI)
        return f"`{emoji} {match.group(2)}`"

    return CONTEXT_REF_RE.sub(_replace, text)


def inline_terminal_commands(
    text: str,
    rules: ClassifierRules = DEFAULT_RULES,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    out: list[str] = []
    for row in scan_lines(text.split("\n")):
        command = None if row.protected else match_terminal_command(row.text, rules)
        if command is None:
            out.append(row.text)
            continue
        out.extend([templates.terminal_label, "```bash", command, "```"])
    return "\n".join(out)


def render_action_block(
    action: Segment,
    project_root: str | None,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    items = "\n".join(
        f"- {simplify_action_paths(line, project_root)}" for line in action.body if line
    )
    return f"{templates.agent_action_marker}\n{templates.action_open}\n\n{items}\n\n{templates.action_close}"


def render_user_prompt(prompt: Segment, templates: RenderTemplates = DEFAULT_TEMPLATES) -> str:
    body = compose(format_context_references, force_line_breaks)(prompt.text)
    return f"{templates.user_prompt_marker}\n{templates.user_prompt_heading}\n\n{body}\n\n"


def _agent_pipeline(rules: ClassifierRules, templates: RenderTemplates) -> Transform:
    return compose(
        format_context_references,
        shift_heading_levels,
        lambda text: inline_terminal_commands(text, rules, templates),
        force_line_breaks,
    )


def render_agent_text(
    text: str,
    rules: ClassifierRules = DEFAULT_RULES,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    body = _agent_pipeline(rules, templates)(text)
    return f"{templates.agent_response_marker}\n{templates.agent_response_heading}\n\n{body}\n\n"


def render_fused_response(
    response: FusedResponse,
    project_root: str | None,
    rules: ClassifierRules = DEFAULT_RULES,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    chunks: list[str] = []
    for part in response.body:
        if isinstance(part, ActionRef):
            chunks.append(render_action_block(response.actions[part.index], project_root, templates))
        else:
            chunks.append(part.text)
    return render_agent_text("\n\n".join(chunks), rules, templates)


def render_segment(
    segment: Segment,
    project_root: str | None,
    rules: ClassifierRules = DEFAULT_RULES,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    if segment.kind == USER_PROMPT:
        return render_user_prompt(segment, templates)
    if segment.kind == AGENT_RESPONSE:
        return render_agent_text(segment.text, rules, templates)
    if segment.kind == TOOL_ACTION_SEGMENT:
        return render_action_block(segment, project_root, templates) + "\n\n"
    return segment.text + "\n\n"


def render_turn(
    turn: MergedTurn,
    project_root: str | None,
    rules: ClassifierRules = DEFAULT_RULES,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    if turn.prompt is None:
        return "".join(render_segment(s, project_root, rules, templates) for s in turn.passthrough)

    rendered = render_user_prompt(turn.prompt, templates)
    if turn.response is not None:
        rendered += render_fused_response(turn.response, project_root, rules, templates)
    return rendered


def render_frontmatter(
    project_root: str | None,
    source_file: str,
    processed_date: str,
    templates: RenderTemplates = DEFAULT_TEMPLATES,
) -> str:
    return f"""---
type: chat-session
projectRoot: {project_root or NOT_AVAILABLE}
sourceFile: {source_file}
processedDate: {processed_date}
---
{templates.processed_marker}

"""
