import sys
import unittest
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts" / "py"))

from config import DEFAULT_CONFIG
from formatter import (
    FormatterSettings,
    analyze_content,
    is_already_processed,
    process_content,
    processed_timestamp,
    strip_frontmatter,
)
from session_parser import SessionParseError


DATE = "2026-01-01T00:00:00.000Z"
READ_A = "Read [](file:///home/u/p/proj/src/a.js)"
SCENARIO = f"alice: hi\nGitHub Copilot: hello\n{READ_A}\nDone."

EXPECTED = (
    "---\n"
    "type: chat-session\n"
    "projectRoot: /home/u/p/proj\n"
    "sourceFile: session.md\n"
    f"processedDate: {DATE}\n"
    "---\n"
    "<!-- formatted-chat-session -->\n"
    "\n"
    "<!-- user-prompt -->\n"
    "## 👤 User Prompt\n"
    "\n"
    "hi\n"
    "\n"
    "<!-- agent-response -->\n"
    "## 🤖 Response\n"
    "\n"
    "hello\n"
    "\n"
    "<!-- agent-action -->\n"
    "<details><summary>🔧 Technical Actions</summary>\n"
    "\n"
    "- Read [a.js](/src/a.js)\n"
    "\n"
    "</details>\n"
    "\n"
    "Done.\n"
    "\n"
)


class ProcessContentTests(unittest.TestCase):
    def test_full_document_for_simple_session(self) -> None:
        result = process_content(SCENARIO, source_file="session.md", processed_date=DATE)

        self.assertFalse(result.skipped)
        self.assertEqual(result.content, EXPECTED)

    def test_processed_input_is_returned_untouched(self) -> None:
        first = process_content(SCENARIO, source_file="session.md", processed_date=DATE).content
        with self.assertLogs("formatter", level="WARNING"):
            second = process_content(first, source_file="session.md")

        self.assertTrue(second.skipped)
        self.assertEqual(second.content, first)
        self.assertTrue(is_already_processed(first))

    def test_force_replaces_existing_frontmatter(self) -> None:
        previous = (
            "---\ntype: chat-session\nprojectRoot: N/A\nsourceFile: old.md\n"
            "processedDate: 2025-01-01T00:00:00.000Z\n---\n<!-- formatted-chat-session -->\n\n"
        )
        result = process_content(previous + SCENARIO, force=True, source_file="session.md", processed_date=DATE)

        self.assertFalse(result.skipped)
        self.assertEqual(result.content, EXPECTED)
        self.assertEqual(result.content.count("<!-- formatted-chat-session -->"), 1)
        self.assertNotIn("old.md", result.content)

    def test_fenced_terminal_line_survives_formatting(self) -> None:
        content = "alice: hi\nGitHub Copilot: see\n```text\nRan terminal command: ls -la\n```\nok"
        result = process_content(content, processed_date=DATE)

        self.assertIn("```text\nRan terminal command: ls -la\n```\nok", result.content)
        self.assertNotIn("```bash", result.content)
        self.assertEqual(result.content.count("```"), 2)

    def test_strip_frontmatter_leaves_plain_text_alone(self) -> None:
        self.assertEqual(strip_frontmatter("alice: hi\n---\nx"), "alice: hi\n---\nx")

    def test_missing_user_identifier_raises(self) -> None:
        with self.assertRaises(SessionParseError):
            process_content("GitHub Copilot: nobody asked")

    def test_session_without_file_links_has_no_project_root(self) -> None:
        result = process_content("bob: hi\nGitHub Copilot: hey", processed_date=DATE)

        self.assertIn("projectRoot: N/A\n", result.content)
        self.assertIn("sourceFile: stdin\n", result.content)

    def test_custom_agent_token_from_settings(self) -> None:
        config = deepcopy(DEFAULT_CONFIG)
        config["speakers"]["agent"] = "Claude"
        config["visual"]["agent_response"] = "## Assistant"
        settings = FormatterSettings.from_config(config)

        result = process_content("bob: q\nClaude: a\nMade changes.", processed_date=DATE, settings=settings)

        self.assertIn("## Assistant\n\na\n", result.content)
        self.assertIn("- Made changes.", result.content)


class AnalysisTests(unittest.TestCase):
    def test_stats_for_simple_session(self) -> None:
        analysis = analyze_content(SCENARIO)

        self.assertEqual(analysis.user_identifier, "alice")
        self.assertEqual(analysis.project_root, "/home/u/p/proj")
        self.assertEqual(
            analysis.stats.as_dict(),
            {
                "raw_segments": 4,
                "merged_turns": 1,
                "user_prompts": 1,
                "agent_responses": 1,
                "action_sequences": 1,
                "action_lines": 1,
            },
        )

    def test_orphan_actions_are_counted(self) -> None:
        content = f"{READ_A}\nMade changes.\nalice: q\nGitHub Copilot: a"
        stats = analyze_content(content).stats

        self.assertEqual(stats.merged_turns, 2)
        self.assertEqual(stats.user_prompts, 1)
        self.assertEqual(stats.action_sequences, 1)
        self.assertEqual(stats.action_lines, 2)


class TimestampTests(unittest.TestCase):
    def test_millisecond_precision_in_utc(self) -> None:
        moment = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        self.assertEqual(processed_timestamp(moment), "2026-01-02T03:04:05.678Z")

    def test_offset_is_converted_to_utc(self) -> None:
        moment = datetime(2026, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(processed_timestamp(moment), "2026-01-02T03:04:05.000Z")


if __name__ == "__main__":
    unittest.main()
