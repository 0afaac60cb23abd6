import sys
import unittest
from copy import deepcopy
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts" / "py"))

from config import DEFAULT_CONFIG
from line_classifier import (
    AGENT_TURN,
    BLANK,
    CODE,
    FENCE,
    NOISE,
    TERMINAL_COMMAND,
    TEXT,
    TOOL_ACTION,
    USER_TURN,
    ClassifierRules,
    classify_line,
    is_tool_action,
)


class LineClassifierTests(unittest.TestCase):
    def test_user_and_agent_openers_capture_trimmed_payload(self) -> None:
        user = classify_line("alice:   hi there ", "alice")
        agent = classify_line("GitHub Copilot: hello", "alice")

        self.assertEqual((user.kind, user.payload), (USER_TURN, "hi there"))
        self.assertEqual((agent.kind, agent.payload), (AGENT_TURN, "hello"))

    def test_other_speaker_prefix_is_plain_text(self) -> None:
        self.assertEqual(classify_line("bob: hi", "alice").kind, TEXT)

    def test_continuation_prompts_are_noise(self) -> None:
        self.assertEqual(classify_line("alice: Continue: yes", "alice").kind, NOISE)
        self.assertEqual(classify_line("alice: @agent Continue: \"Continue to iterate?\"", "alice").kind, NOISE)
        self.assertEqual(classify_line("alice: please Continue: now", "alice").kind, USER_TURN)

    def test_noise_lines_win_even_inside_fences(self) -> None:
        self.assertEqual(classify_line("Continue to iterate?", "alice").kind, NOISE)
        self.assertEqual(classify_line("  Continue to iterate?  ", "alice").kind, NOISE)
        self.assertEqual(classify_line("[object Object]", "alice", in_fence=True).kind, NOISE)
        self.assertEqual(classify_line("Continue to iterate? maybe", "alice").kind, TEXT)

    def test_tool_action_openers(self) -> None:
        actions = [
            "Read [](file:///home/u/p/proj/src/a.js)",
            "Created [](file:///home/u/p/proj/src/b.js)",
            'Using "Replace String in File"',
            "Searched text for `TODO` (**/src/**), 4 results",
            "Updated todo list",
            "Completed (2/5) *Write tests*",
            "Made changes.",
            "Summarized conversation history",
            "Created 3 todos",
        ]
        for line in actions:
            with self.subTest(line=line):
                self.assertEqual(classify_line(line, "alice").kind, TOOL_ACTION)

        self.assertFalse(is_tool_action("  Read [](file:///home/u/p/proj/a.js)"))
        self.assertFalse(is_tool_action("I Read [](file:///x) earlier"))

    def test_fence_lines_and_fenced_content(self) -> None:
        self.assertEqual(classify_line("```python", "alice").kind, FENCE)
        self.assertEqual(classify_line("alice: hi", "alice", in_fence=True).kind, CODE)
        self.assertEqual(classify_line("Made changes.", "alice", in_fence=True).kind, CODE)

    def test_terminal_blank_and_text(self) -> None:
        terminal = classify_line("Ran terminal command: npm test -- --watch=false", "alice")
        self.assertEqual((terminal.kind, terminal.payload), (TERMINAL_COMMAND, "npm test -- --watch=false"))
        self.assertEqual(classify_line("   ", "alice").kind, BLANK)
        self.assertEqual(classify_line("Some prose.", "alice").kind, TEXT)

    def test_rules_built_from_config(self) -> None:
        config = deepcopy(DEFAULT_CONFIG)
        config["speakers"]["agent"] = "Claude"
        config["patterns"]["actions"] = [r"^Tool call:"]
        rules = ClassifierRules.from_config(config)

        self.assertEqual(rules.agent_prefix, "Claude:")
        self.assertEqual(classify_line("Claude: ok", "alice", rules=rules).kind, AGENT_TURN)
        self.assertEqual(classify_line("GitHub Copilot: ok", "alice", rules=rules).kind, TEXT)
        self.assertEqual(classify_line("Tool call: grep", "alice", rules=rules).kind, TOOL_ACTION)
        self.assertEqual(classify_line("Made changes.", "alice", rules=rules).kind, TEXT)


if __name__ == "__main__":
    unittest.main()
