#!/usr/bin/env python3
"""Tests for redirect destination safety checks.

A redirect must never land outside the project/home directories, inside
a protected system directory, inside a configured blocked directory, or
on the rules file itself.

Run: python -m pytest tests/test_destination_safety.py -v
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
from _redirect_utils import is_path_within, is_safe_destination  # noqa: E402

BLOCKED_CONFIG = {
    "security": {
        "blocked_destinations": ["/etc", "/usr", "/bin", "/sbin", "~/.ssh"],
    }
}


class TestIsPathWithin(unittest.TestCase):

    def test_component_containment(self):
        self.assertTrue(is_path_within("/etc/hosts", "/etc"))
        self.assertTrue(is_path_within("/etc", "/etc"))
        self.assertFalse(is_path_within("/etc2/hosts", "/etc"))
        self.assertFalse(is_path_within("/et", "/etc"))

    def test_root_contains_everything(self):
        self.assertTrue(is_path_within("/anything/at/all", "/"))


class TestIsSafeDestination(unittest.TestCase):

    def setUp(self):
        ru._active_config_path = None
        self.working_dir = os.path.realpath(tempfile.mkdtemp(prefix="fs_mv_safe_"))
        self.home_dir = os.path.realpath(tempfile.mkdtemp(prefix="fs_mv_home_"))
        self.outside_dir = os.path.realpath(tempfile.mkdtemp(prefix="fs_mv_outside_"))
        self.env = patch.dict(os.environ, {"HOME": self.home_dir})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        ru._active_config_path = None
        for path in (self.working_dir, self.home_dir, self.outside_dir):
            shutil.rmtree(path, ignore_errors=True)

    def _check(self, path, config=BLOCKED_CONFIG):
        return is_safe_destination(path, self.working_dir, config)

    def test_project_destination_is_safe(self):
        safe, reason = self._check(os.path.join(self.working_dir, "docs", "test.md"))
        self.assertTrue(safe)
        self.assertEqual(reason, "")

    def test_home_destination_is_safe(self):
        safe, _ = self._check(os.path.join(self.home_dir, "notes", "test.md"))
        self.assertTrue(safe)

    def test_system_directories_are_rejected(self):
        for path in ("/etc/passwd", "/usr/bin/script", "/etc/shadow"):
            with self.subTest(path=path):
                safe, _ = self._check(path)
                self.assertFalse(safe)

    def test_path_traversal_is_rejected(self):
        for path in (
            "../../../etc/passwd",
            os.path.join(self.working_dir, "docs", "..", "..", "x.md"),
            os.path.join(self.working_dir, "docs", "..", "notes", "x.md"),
            "docs\\..\\..\\x.md",
        ):
            with self.subTest(path=path):
                safe, reason = self._check(path)
                self.assertFalse(safe)
                self.assertIn("traversal", reason)

    def test_ssh_directory_is_rejected(self):
        safe, _ = self._check(os.path.expanduser("~/.ssh/id_rsa"))
        self.assertFalse(safe)

    def test_builtin_protection_without_config(self):
        safe, reason = self._check(os.path.expanduser("~/.gnupg/pubring.kbx"), config={})
        self.assertFalse(safe)
        self.assertIn("~/.gnupg", reason)

    def test_outside_project_and_home_is_rejected(self):
        safe, reason = self._check(os.path.join(self.outside_dir, "file.md"))
        self.assertFalse(safe)
        self.assertIn("outside", reason)

    def test_relative_blocked_destination(self):
        config = {"security": {"blocked_destinations": ["vendor"]}}
        safe, _ = self._check(os.path.join(self.working_dir, "vendor", "x.md"), config)
        self.assertFalse(safe)

    def test_blocked_prefix_does_not_block_sibling(self):
        config = {"security": {"blocked_destinations": ["private"]}}
        safe, _ = self._check(os.path.join(self.working_dir, "private2", "x.md"), config)
        self.assertTrue(safe)

    def test_symlink_escape_is_rejected(self):
        link = os.path.join(self.working_dir, "link")
        try:
            os.symlink(self.outside_dir, link)
        except (OSError, NotImplementedError):
            self.skipTest("symlinks not supported")
        safe, reason = self._check(os.path.join(link, "file.md"))
        self.assertFalse(safe)
        self.assertIn("symlink", reason)

    def test_rules_file_is_rejected(self):
        rules_file = os.path.join(self.working_dir, ".claude", "redirect", "rules.json")
        ru._active_config_path = rules_file
        safe, reason = self._check(rules_file)
        self.assertFalse(safe)
        self.assertIn("rules file", reason)

    def test_null_byte_is_rejected(self):
        safe, _ = self._check(os.path.join(self.working_dir, "docs", "a\x00.md"))
        self.assertFalse(safe)


if __name__ == "__main__":
    unittest.main()
