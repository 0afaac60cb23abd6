from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from config import DEFAULT_CONFIG


FENCE_MARKER = "```"

# Line labels.
NOISE = "noise"
FENCE = "fence"
CODE = "code"
USER_TURN = "user_turn"
AGENT_TURN = "agent_turn"
TOOL_ACTION = "tool_action"
TERMINAL_COMMAND = "terminal_command"
BLANK = "blank"
TEXT = "text"


@dataclass(frozen=True)
class ClassifierRules:
    agent_token: str
    user_identifier_re: re.Pattern[str]
    action_res: tuple[re.Pattern[str], ...]
    terminal_re: re.Pattern[str]
    noise_res: tuple[re.Pattern[str], ...]
    ignore_user_res: tuple[re.Pattern[str], ...]

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ClassifierRules":
        patterns = config["patterns"]
        return cls(
            agent_token=str(config["speakers"]["agent"]),
            user_identifier_re=re.compile(patterns["user_identifier"]),
            action_res=tuple(re.compile(p) for p in patterns["actions"]),
            terminal_re=re.compile(patterns["terminal_command"]),
            noise_res=tuple(re.compile(p) for p in patterns["noise"]),
            ignore_user_res=tuple(re.compile(p) for p in patterns["ignore_user_prompts"]),
        )

    @property
    def agent_prefix(self) -> str:
        return f"{self.agent_token}:"


DEFAULT_RULES = ClassifierRules.from_config(DEFAULT_CONFIG)


@dataclass(frozen=True)
class LineLabel:
    kind: str
    payload: str = ""


def is_fence_marker(line: str) -> bool:
    return line.startswith(FENCE_MARKER)


def is_noise(line: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    stripped = line.strip()
    return any(p.search(stripped) for p in rules.noise_res)


def is_tool_action(line: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    return any(p.search(line) for p in rules.action_res)


def match_terminal_command(line: str, rules: ClassifierRules = DEFAULT_RULES) -> str | None:
    match = rules.terminal_re.search(line)
    if not match:
        return None
    return match.group(1) if match.groups() else line


def is_ignored_user_prompt(payload: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    return any(p.search(payload) for p in rules.ignore_user_res)


def classify_line(
    line: str,
    user_identifier: str,
    in_fence: bool = False,
    rules: ClassifierRules = DEFAULT_RULES,
) -> LineLabel:
    """Label one transcript line.

    Noise wins over everything else. An ignored continuation prompt is
    reported as noise rather than as a user turn.
    """
    if is_noise(line, rules):
        return LineLabel(NOISE)

    if is_fence_marker(line):
        return LineLabel(FENCE, line)

    if in_fence:
        return LineLabel(CODE, line)

    user_prefix = f"{user_identifier}:"
    if user_identifier and line.startswith(user_prefix):
        payload = line[len(user_prefix):].strip()
        if is_ignored_user_prompt(payload, rules):
            return LineLabel(NOISE)
        return LineLabel(USER_TURN, payload)

    if line.startswith(rules.agent_prefix):
        return LineLabel(AGENT_TURN, line[len(rules.agent_prefix):].strip())

    if is_tool_action(line, rules):
        return LineLabel(TOOL_ACTION, line)

    if not line.strip():
        return LineLabel(BLANK, line)

    command = match_terminal_command(line, rules)
    if command is not None:
        return LineLabel(TERMINAL_COMMAND, command)

    return LineLabel(TEXT, line)
