from __future__ import annotations

import json
import os
import re
try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise RuntimeError(
            "TOML parser unavailable. Use Python 3.11+ or install tomli for Python 3.10."
        ) from exc
from copy import deepcopy
from pathlib import Path
from typing import Any


CONFIG_ENV_VAR = "CHAT_FORMAT_CONFIG"
DEFAULT_CONFIG_NAME = ".chat-session-format.toml"

DEFAULT_CONFIG: dict[str, Any] = {
    "speakers": {
        "agent": "GitHub Copilot",
    },
    "patterns": {
        "user_identifier": r"^([a-zA-Z0-9_-]+):\s",
        "actions": [
            r"^Read \[\]\(file://(.+?)\)",
            r"^Created \[\]\(file://(.+?)\)",
            r'^Using "Replace String in File"',
            r"^Searched text for",
            r"^Updated todo list",
            r"^Completed \(\d+/\d+\)",
            r"^Made changes\.",
            r"^Summarized conversation history",
            r"^Created \d+ todos",
        ],
        "terminal_command": r"^Ran terminal command: (.+)$",
        "noise": [
            r"^Continue to iterate\?$",
            r"^\[object Object\]$",
        ],
        "ignore_user_prompts": [
            r"^@agent Continue:",
            r"^Continue:",
        ],
    },
    "markers": {
        "processed": "<!-- formatted-chat-session -->",
        "user_prompt": "<!-- user-prompt -->",
        "agent_response": "<!-- agent-response -->",
        "agent_action": "<!-- agent-action -->",
    },
    "visual": {
        "user_prompt": "## 👤 User Prompt",
        "agent_response": "## 🤖 Response",
        "agent_action": "<details><summary>🔧 Technical Actions</summary>",
        "agent_action_end": "</details>",
        "terminal_label": "▶️ **Terminal command:**",
    },
    "paths": {
        "project_root_depth": 4,
    },
}

_PATTERN_LISTS = ("actions", "noise", "ignore_user_prompts")
_PATTERN_SCALARS = ("user_identifier", "terminal_command")


class ConfigError(RuntimeError):
    pass


def _q(value: str) -> str:
    # JSON string escaping is TOML-basic-string compatible.
    return json.dumps(value, ensure_ascii=False)


def _q_list(values: list[str]) -> str:
    inner = ",\n".join(f"    {_q(str(v))}" for v in values)
    return f"[\n{inner},\n]"


def render_default_config() -> str:
    speakers = DEFAULT_CONFIG["speakers"]
    patterns = DEFAULT_CONFIG["patterns"]
    markers = DEFAULT_CONFIG["markers"]
    visual = DEFAULT_CONFIG["visual"]
    paths = DEFAULT_CONFIG["paths"]

    return f"""# chat-session-format configuration.
# Every key is optional; missing keys fall back to the built-in defaults.

[speakers]
# Prefix (before the colon) that opens an agent turn.
agent = {_q(str(speakers["agent"]))}

[patterns]
user_identifier = {_q(str(patterns["user_identifier"]))}
terminal_command = {_q(str(patterns["terminal_command"]))}
# Lines condensed into collapsible action blocks.
actions = {_q_list(patterns["actions"])}
# Lines dropped entirely.
noise = {_q_list(patterns["noise"])}
# User prompts dropped entirely (matched against the text after "<user>:").
ignore_user_prompts = {_q_list(patterns["ignore_user_prompts"])}

[markers]
processed = {_q(str(markers["processed"]))}
user_prompt = {_q(str(markers["user_prompt"]))}
agent_response = {_q(str(markers["agent_response"]))}
agent_action = {_q(str(markers["agent_action"]))}

[visual]
user_prompt = {_q(str(visual["user_prompt"]))}
agent_response = {_q(str(visual["agent_response"]))}
agent_action = {_q(str(visual["agent_action"]))}
agent_action_end = {_q(str(visual["agent_action_end"]))}
terminal_label = {_q(str(visual["terminal_label"]))}

[paths]
project_root_depth = {int(paths["project_root_depth"])}
"""


def write_default_config(cfg_path: Path, force: bool = False) -> Path:
    if cfg_path.exists() and not force:
        raise ConfigError(f"config already exists: {cfg_path} (use --force to overwrite)")
    if cfg_path.is_dir():
        raise ConfigError(f"config path is a directory: {cfg_path}")

    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(render_default_config(), encoding="utf-8")
    return cfg_path


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in incoming.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _check_pattern(key: str, value: Any) -> None:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    try:
        re.compile(value)
    except re.error as exc:
        raise ConfigError(f"{key} is not a valid regular expression: {exc}") from exc


def validate_config(merged: dict[str, Any]) -> dict[str, Any]:
    agent = merged.get("speakers", {}).get("agent")
    if not isinstance(agent, str) or not agent.strip():
        raise ConfigError("speakers.agent must be a non-empty string")
    merged["speakers"]["agent"] = agent.strip()

    patterns = merged.get("patterns", {})
    for key in _PATTERN_SCALARS:
        _check_pattern(f"patterns.{key}", patterns.get(key))
    for key in _PATTERN_LISTS:
        values = patterns.get(key)
        if not isinstance(values, list):
            raise ConfigError(f"patterns.{key} must be a list")
        for idx, value in enumerate(values):
            _check_pattern(f"patterns.{key}[{idx}]", value)
    if not patterns["actions"]:
        raise ConfigError("patterns.actions must be a non-empty list")

    for table in ("markers", "visual"):
        for key, value in merged.get(table, {}).items():
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{table}.{key} must be a non-empty string")

    depth = merged.get("paths", {}).get("project_root_depth")
    if isinstance(depth, bool) or not isinstance(depth, int) or depth < 1:
        raise ConfigError("paths.project_root_depth must be an integer >= 1")

    return merged


def resolve_config_path(config_arg: str | None, cwd: Path | None = None) -> Path | None:
    base = cwd or Path.cwd()
    source = config_arg or os.getenv(CONFIG_ENV_VAR)
    if source:
        p = Path(source).expanduser()
        return p if p.is_absolute() else (base / p).resolve()

    candidate = base / DEFAULT_CONFIG_NAME
    if candidate.is_file():
        return candidate.resolve()
    return None


def load_config(config_path: str | None = None, cwd: Path | None = None) -> tuple[dict[str, Any], Path | None]:
    cfg_path = resolve_config_path(config_path, cwd)
    if cfg_path is None:
        return validate_config(deepcopy(DEFAULT_CONFIG)), None

    if not cfg_path.is_file():
        raise ConfigError(f"config file not found: {cfg_path}")

    try:
        parsed = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {cfg_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"unable to read config {cfg_path}: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ConfigError(f"invalid config root (expected table): {cfg_path}")

    return validate_config(_deep_merge(DEFAULT_CONFIG, parsed)), cfg_path
