#!/usr/bin/env python3
"""Tests for filename pattern matching.

Covers the four pattern forms accepted in redirect rules:
glob (with brace alternation), extension, exact name and /regex/.

Run: python -m pytest tests/test_pattern_matching.py -v
"""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parent))
import _bootstrap  # noqa: F401, E402

import _redirect_utils as ru  # noqa: E402
from _redirect_utils import expand_braces, is_regex_pattern, matches_pattern  # noqa: E402


class TestGlobPatterns(unittest.TestCase):

    def test_star_extension(self):
        self.assertTrue(matches_pattern("*.md", "test.md"))
        self.assertTrue(matches_pattern("*.md", "README.md"))
        self.assertFalse(matches_pattern("*.md", "test.txt"))

    def test_prefix_glob(self):
        self.assertTrue(matches_pattern("test_*.rb", "test_helper.rb"))
        self.assertFalse(matches_pattern("test_*.rb", "helper_test.rb"))

    def test_question_mark_and_class(self):
        self.assertTrue(matches_pattern("note?.txt", "note1.txt"))
        self.assertFalse(matches_pattern("note?.txt", "note12.txt"))
        self.assertTrue(matches_pattern("[ab]*.log", "alpha.log"))
        self.assertFalse(matches_pattern("[ab]*.log", "gamma.log"))

    def test_brace_alternation(self):
        self.assertTrue(matches_pattern("*.{md,txt}", "notes.txt"))
        self.assertTrue(matches_pattern("*.{md,txt}", "notes.md"))
        self.assertFalse(matches_pattern("*.{md,txt}", "notes.rst"))

    def test_glob_is_case_sensitive_by_default(self):
        self.assertFalse(matches_pattern("*.md", "NOTES.MD"))

    def test_glob_case_insensitive(self):
        self.assertTrue(matches_pattern("*.md", "NOTES.MD", case_sensitive=False))


class TestExtensionAndExactPatterns(unittest.TestCase):

    def test_extension(self):
        self.assertTrue(matches_pattern(".md", "test.md"))
        self.assertTrue(matches_pattern(".rb", "script.rb"))
        self.assertFalse(matches_pattern(".js", "test.rb"))

    def test_compound_extension(self):
        self.assertTrue(matches_pattern(".test.js", "app.test.js"))
        self.assertFalse(matches_pattern(".test.js", "app.js"))

    def test_exact_match(self):
        self.assertTrue(matches_pattern("package.json", "package.json"))
        self.assertFalse(matches_pattern("package.json", "requirements.txt"))
        self.assertFalse(matches_pattern("package.json", "my-package.json"))

    def test_exact_case_insensitive(self):
        self.assertTrue(matches_pattern("TODO.txt", "todo.TXT", case_sensitive=False))
        self.assertFalse(matches_pattern("TODO.txt", "todo.TXT"))


class TestRegexPatterns(unittest.TestCase):

    def test_regex_form_detection(self):
        self.assertTrue(is_regex_pattern("/^a$/"))
        self.assertFalse(is_regex_pattern("/"))
        self.assertFalse(is_regex_pattern("*.md"))

    def test_anchored_regex(self):
        self.assertTrue(matches_pattern(r"/^notes_\d+\.md$/", "notes_12.md"))
        self.assertFalse(matches_pattern(r"/^notes_\d+\.md$/", "notes_x.md"))

    def test_regex_containing_star_is_not_a_glob(self):
        self.assertTrue(matches_pattern(r"/.*\.md$/", "guide.md"))
        self.assertFalse(matches_pattern(r"/.*\.md$/", "guide.txt"))

    def test_regex_case_insensitive(self):
        self.assertFalse(matches_pattern(r"/^draft/", "DRAFT-1.md"))
        self.assertTrue(matches_pattern(r"/^draft/", "DRAFT-1.md", case_sensitive=False))

    def test_invalid_regex_never_matches(self):
        self.assertFalse(matches_pattern("/[unclosed/", "[unclosed"))


class TestRegexTimeout(unittest.TestCase):

    def setUp(self):
        self.project_dir = os.path.realpath(tempfile.mkdtemp(prefix="fs_mv_regex_"))
        self.env = patch.dict(os.environ, {"CLAUDE_PROJECT_DIR": self.project_dir})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.project_dir, ignore_errors=True)

    def test_timeout_is_no_match_and_logged(self):
        with patch.object(ru.regex, "search", side_effect=TimeoutError("regex timed out")):
            self.assertFalse(matches_pattern(r"/^(a+)+$/", "a" * 40 + "b"))

        log_file = Path(self.project_dir) / ".claude" / "redirect" / "redirect.log"
        log_text = log_file.read_text(encoding="utf-8")
        self.assertIn("[WARN]", log_text)
        self.assertIn("Regex timeout", log_text)

    def test_safe_regex_search_passes_timeout(self):
        with patch.object(ru.regex, "search", return_value=None) as search:
            ru.safe_regex_search("^a", "abc", timeout=0.25)
        self.assertEqual(search.call_args.kwargs["timeout"], 0.25)


class TestDegenerateInput(unittest.TestCase):

    def test_empty_and_non_string_patterns(self):
        self.assertFalse(matches_pattern("", "file.md"))
        self.assertFalse(matches_pattern(None, "file.md"))
        self.assertFalse(matches_pattern(42, "file.md"))


class TestExpandBraces(unittest.TestCase):

    def test_no_braces(self):
        self.assertEqual(expand_braces("*.md"), ["*.md"])

    def test_single_group(self):
        self.assertEqual(expand_braces("*.{md,txt}"), ["*.md", "*.txt"])

    def test_multiple_groups(self):
        self.assertEqual(
            expand_braces("{a,b}_{x,y}"),
            ["a_x", "a_y", "b_x", "b_y"],
        )

    def test_nested_groups_expand_inner_first(self):
        self.assertEqual(
            sorted(set(expand_braces("{a,{b,c}}"))),
            ["a", "b", "c"],
        )


if __name__ == "__main__":
    unittest.main()
