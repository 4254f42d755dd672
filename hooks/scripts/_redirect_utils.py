#!/usr/bin/env python3
"""Redirect utilities for the fs-mv Write Redirect Plugin.

This module provides everything the write redirect hook needs:
- Configuration loading from redirect rules files
- Configuration validation (shared with the validator CLI)
- Filename pattern matching (glob, extension, exact, /regex/)
- Rule evaluation and destination resolution
- Destination safety checks (traversal, protected dirs, blocked dirs)
- Logging

Config resolution chain (3-step):
    1. $CLAUDE_PROJECT_DIR/.claude/redirect/rules.json (user custom)
    2. $CLAUDE_PLUGIN_ROOT/assets/redirect-rules.default.json (plugin default)
    3. Hardcoded _FALLBACK_CONFIG (no rules, nothing is redirected)

Usage:
    from _redirect_utils import (
        load_redirect_config,
        find_redirected_path,
        is_safe_destination,
        log_redirect,
        run_redirect_hook,  # Orchestration function
    )

Note on log_redirect():
    - Silent fail if CLAUDE_PROJECT_DIR not set
    - Silent fail on file write errors

Design Principles:
    1. Fail-Open: the hook must never break the assistant's write. Any
       problem degrades to "no redirect".
    2. First match wins: rules are evaluated in config order.
    3. A redirect is only emitted for destinations that pass every safety check.
"""

import copy
import fnmatch
import json
import os
import re
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import regex

# ============================================================
# Constants
# ============================================================

DRY_RUN_ENV = "CLAUDE_HOOK_DRY_RUN"
"""Environment variable to enable dry-run mode.
Set to "1", "true", or "yes" to enable."""

LOOP_DETECTION_KEY = "fs_mv_loop_detection"
"""Environment key carrying the redirect depth between hook invocations."""

MAX_LOOPS = 15
"""Default maximum redirect depth before the hook stops redirecting."""

MAX_REDIRECT_DEPTH_LIMIT = 20
"""Upper bound accepted for global_settings.max_redirect_depth."""

MAX_RULES = 50
"""Rule count above which the validator warns."""

MAX_PATTERN_LENGTH = 100
"""Pattern length above which the validator warns."""

MAX_DESTINATION_LENGTH = 200
"""Destination length above which the validator warns."""

MAX_FILE_SIZE_MB_LIMIT = 1000
"""Upper bound accepted for security.max_file_size_mb."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display. Paths longer than this are truncated."""

MAX_LOG_SIZE_BYTES = 1_000_000
"""Maximum log file size before rotation (1 MB)."""

REGEX_TIMEOUT_SECONDS = 0.5
"""Timeout for user-supplied /regex/ patterns to prevent ReDoS."""

REQUIRED_RULE_FIELDS = ("name", "pattern", "destination")

VALID_SOURCE_LOCATIONS = ("root_only", "anywhere")

VALID_ERROR_ACTIONS = ("allow", "deny")

BOOLEAN_GLOBAL_SETTINGS = (
    "create_directories",
    "notify_on_redirect",
    "backup_original",
    "case_sensitive",
    "require_confirmation",
)

PROTECTED_DESTINATIONS = (
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/System",
    "/Library",
    "~/.ssh",
    "~/.gnupg",
    "~/.aws",
)
"""Directories a redirect may never target, regardless of configuration."""

_GLOB_CHARS = ("*", "?", "[", "{")

_BRACE_RE = re.compile(r"\{([^{}]*)\}")

# Fallback config: no rules means no redirect
_FALLBACK_CONFIG = {
    "version": "1.0",
    "rules": [],
    "global_settings": {
        "create_directories": False,
        "notify_on_redirect": False,
    },
    "security": {
        "blocked_destinations": [],
    },
}

# ============================================================
# Configuration
# ============================================================

_config_cache: dict | None = None
_using_fallback_config: bool = False
"""Flag indicating if fallback config is in use."""

_active_config_path: str | None = None
"""Path to the rules file that was actually loaded. A redirect may never target it."""


def get_project_dir() -> str:
    """Get and validate project directory from environment variable.

    Returns:
        Project directory path, or empty string if not set or not a directory.
    """
    project_dir = os.environ.get("CLAUDE_PROJECT_DIR", "")
    if not project_dir:
        return ""

    # Note: Cannot call log_redirect() here - log_redirect() calls get_project_dir()
    if not os.path.isdir(project_dir):
        return ""

    return project_dir


def _get_plugin_root() -> str:
    """Get the plugin root directory from environment variable.

    Returns:
        Plugin root directory path, or empty string if not set.
    """
    return os.environ.get("CLAUDE_PLUGIN_ROOT", "")


def get_working_dir(input_data: dict | None = None) -> str:
    """Resolve the directory that relative paths and root_only rules refer to.

    Order: $CLAUDE_PROJECT_DIR, the event's "cwd", the process cwd.

    Args:
        input_data: Parsed hook event, if available.

    Returns:
        Absolute, normalized working directory.
    """
    project_dir = get_project_dir()
    if project_dir:
        return os.path.normpath(os.path.abspath(project_dir))

    if isinstance(input_data, dict):
        cwd = input_data.get("cwd")
        if isinstance(cwd, str) and cwd and os.path.isdir(cwd):
            return os.path.normpath(os.path.abspath(cwd))

    return os.path.normpath(os.getcwd())


def get_config_candidates() -> list[Path]:
    """List rules file locations in resolution order.

    Returns:
        Candidate paths; entries whose base env var is unset are omitted.
    """
    candidates = []
    project_dir = get_project_dir()
    if project_dir:
        candidates.append(Path(project_dir) / ".claude" / "redirect" / "rules.json")
    plugin_root = _get_plugin_root()
    if plugin_root:
        candidates.append(Path(plugin_root) / "assets" / "redirect-rules.default.json")
    return candidates


def find_config_path() -> Path | None:
    """Return the first existing rules file in the resolution chain, or None."""
    for candidate in get_config_candidates():
        if candidate.is_file():
            return candidate
    return None


def load_redirect_config() -> dict[str, Any]:
    """Load the redirect rules with caching and fallback.

    The config is cached for the lifetime of the process.
    Since hooks run as separate processes, this is safe.

    Validation problems are logged as warnings but do not stop loading;
    individual rules are re-checked at evaluation time.

    Returns:
        Configuration dict, or fallback config on error.
        Never raises exceptions.
    """
    global _config_cache, _using_fallback_config, _active_config_path
    if _config_cache is not None:
        return _config_cache

    for config_path in get_config_candidates():
        if not config_path.exists():
            continue
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            log_redirect(
                "ERROR",
                f"[FALLBACK] Invalid JSON in {config_path}: {e}\n"
                "  Fix JSON syntax to restore redirect rules.",
            )
            continue
        except OSError as e:
            log_redirect(
                "ERROR",
                f"[FALLBACK] Failed to read {config_path}: {e}\n  Check file permissions.",
            )
            continue

        if not isinstance(loaded, dict):
            log_redirect(
                "ERROR",
                f"[FALLBACK] Root of {config_path} must be an object, "
                f"got {type(loaded).__name__}",
            )
            continue

        _config_cache = loaded
        _using_fallback_config = False
        _active_config_path = str(config_path)
        log_redirect("INFO", f"Loaded redirect rules from {config_path}")

        errors, warnings = validate_redirect_config(loaded)
        for verr in errors:
            log_redirect("WARN", f"Config validation: {verr}")
        for vwarn in warnings:
            log_redirect("INFO", f"Config validation: {vwarn}")
        return _config_cache

    log_redirect(
        "INFO",
        "[FALLBACK] No redirect rules found.\n"
        "  Searched: .claude/redirect/rules.json"
        + (", plugin default" if _get_plugin_root() else "")
        + "\n  Run /fs-mv:redirect-init to create rules for this project.",
    )
    _config_cache = _FALLBACK_CONFIG
    _using_fallback_config = True
    _active_config_path = None
    return _config_cache


def is_using_fallback_config() -> bool:
    """Check if the empty fallback config is in use.

    Returns:
        True if no rules file could be loaded.
    """
    if _config_cache is None:
        load_redirect_config()
    return _using_fallback_config


def get_active_config_path() -> str | None:
    """Get the path to the rules file that was actually loaded.

    Returns:
        Path string, or None if using hardcoded fallback.
    """
    if _config_cache is None:
        load_redirect_config()
    return _active_config_path


def _section(config: dict, name: str) -> dict[str, Any]:
    """Return a config section as a dict, tolerating missing or mistyped sections."""
    value = config.get(name) if isinstance(config, dict) else None
    return value if isinstance(value, dict) else {}


def get_global_settings(config: dict) -> dict[str, Any]:
    return _section(config, "global_settings")


def get_security_settings(config: dict) -> dict[str, Any]:
    return _section(config, "security")


def get_error_action(config: dict | None = None) -> str:
    """Get global_settings.on_error ("allow" or "deny", default "allow")."""
    if config is None:
        config = load_redirect_config()
    action = get_global_settings(config).get("on_error", "allow")
    return action if action in VALID_ERROR_ACTIONS else "allow"


def max_redirect_depth(config: dict) -> int:
    """Get the configured redirect depth limit, falling back to MAX_LOOPS."""
    depth = get_global_settings(config).get("max_redirect_depth")
    if isinstance(depth, int) and not isinstance(depth, bool):
        if 1 <= depth <= MAX_REDIRECT_DEPTH_LIMIT:
            return depth
    return MAX_LOOPS


# ============================================================
# Configuration Validation
# ============================================================


def _is_bool(value: Any) -> bool:
    return value is True or value is False


def _is_int_in_range(value: Any, low: int, high: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and low <= value <= high


def is_regex_pattern(pattern: str) -> bool:
    """Check if a pattern uses the /regex/ form."""
    return len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/")


def _validate_pattern(pattern: Any, label: str, errors: list, warnings: list) -> None:
    if not isinstance(pattern, str):
        errors.append(f"{label}: Pattern must be a string")
        return
    if not pattern:
        errors.append(f"{label}: Pattern cannot be empty")
        return
    if len(pattern) > MAX_PATTERN_LENGTH:
        warnings.append(f"{label}: Pattern is very long ({len(pattern)} chars)")
    if is_regex_pattern(pattern):
        try:
            regex.compile(pattern[1:-1])
        except regex.error as e:
            errors.append(f"{label}: Invalid regex {pattern}: {e}")


def _validate_destination(destination: Any, label: str, errors: list, warnings: list) -> None:
    if not isinstance(destination, str) or not destination:
        errors.append(f"{label}: Destination must be a non-empty string")
        return

    if ".." in destination.replace("\\", "/").split("/"):
        errors.append(f"{label}: Destination contains path traversal '..'")

    if destination.startswith("~"):
        warnings.append(f"{label}: Destination '{destination}' is outside the project (home directory)")

    expanded = os.path.expanduser(destination)
    if os.path.isabs(expanded):
        for protected in PROTECTED_DESTINATIONS:
            if is_path_within(expanded, _absolute(protected)):
                errors.append(
                    f"{label}: Destination is inside protected directory '{protected}'"
                )
                break

    if len(destination) > MAX_DESTINATION_LENGTH:
        warnings.append(f"{label}: Destination path is very long ({len(destination)} chars)")


def _validate_rule(rule: Any, index: int, errors: list, warnings: list) -> None:
    if not isinstance(rule, dict):
        errors.append(f"Rule {index}: Must be an object")
        return

    label = f"Rule {index} ({rule.get('name') or 'unnamed'})"

    for field in REQUIRED_RULE_FIELDS:
        value = rule.get(field)
        if value is None or (isinstance(value, str) and not value):
            errors.append(f"{label}: Missing required field '{field}'")

    if "pattern" in rule and rule["pattern"] is not None:
        _validate_pattern(rule["pattern"], label, errors, warnings)

    location = rule.get("source_location")
    if location is not None and location not in VALID_SOURCE_LOCATIONS:
        errors.append(
            f"{label}: Invalid source_location '{location}'. "
            f"Must be one of: {', '.join(VALID_SOURCE_LOCATIONS)}"
        )

    if "destination" in rule and rule["destination"] is not None:
        _validate_destination(rule["destination"], label, errors, warnings)

    exclude = rule.get("exclude")
    if exclude is not None:
        if not isinstance(exclude, list):
            errors.append(f"{label}: 'exclude' must be an array")
        else:
            for i, entry in enumerate(exclude):
                if not isinstance(entry, str) or not entry:
                    errors.append(f"{label}: exclude[{i}] must be a non-empty string")

    if "enabled" not in rule:
        warnings.append(f"{label}: 'enabled' not set, rule is inactive")
    elif not _is_bool(rule["enabled"]):
        errors.append(f"{label}: 'enabled' must be true or false")


def _validate_global_settings(config: dict, errors: list) -> None:
    if "global_settings" not in config:
        return
    settings = config["global_settings"]
    if not isinstance(settings, dict):
        errors.append("global_settings must be an object")
        return

    for setting in BOOLEAN_GLOBAL_SETTINGS:
        if setting in settings and not _is_bool(settings[setting]):
            errors.append(f"global_settings.{setting} must be true or false")

    if "max_redirect_depth" in settings:
        if not _is_int_in_range(settings["max_redirect_depth"], 1, MAX_REDIRECT_DEPTH_LIMIT):
            errors.append(
                "global_settings.max_redirect_depth must be an integer "
                f"between 1 and {MAX_REDIRECT_DEPTH_LIMIT}"
            )

    if "on_error" in settings and settings["on_error"] not in VALID_ERROR_ACTIONS:
        errors.append(
            f"global_settings.on_error must be one of: {', '.join(VALID_ERROR_ACTIONS)}"
        )


def _validate_security_settings(config: dict, errors: list) -> None:
    if "security" not in config:
        return
    security = config["security"]
    if not isinstance(security, dict):
        errors.append("security must be an object")
        return

    if "blocked_destinations" in security:
        blocked = security["blocked_destinations"]
        if not isinstance(blocked, list):
            errors.append("security.blocked_destinations must be an array")
        else:
            for i, dest in enumerate(blocked):
                if not isinstance(dest, str) or not dest:
                    errors.append(f"security.blocked_destinations[{i}] must be a non-empty string")

    if "allowed_extensions" in security:
        allowed = security["allowed_extensions"]
        if not isinstance(allowed, list):
            errors.append("security.allowed_extensions must be an array")
        elif not all(isinstance(ext, str) and ext for ext in allowed):
            errors.append("security.allowed_extensions entries must be non-empty strings")

    if "max_file_size_mb" in security:
        if not _is_int_in_range(security["max_file_size_mb"], 1, MAX_FILE_SIZE_MB_LIMIT):
            errors.append(
                f"security.max_file_size_mb must be an integer between 1 and {MAX_FILE_SIZE_MB_LIMIT}"
            )


def validate_redirect_config(config: Any) -> tuple[list[str], list[str]]:
    """Validate a redirect rules configuration.

    Performs structural and semantic validation:
    - Root object with a "rules" array
    - Per-rule required fields, pattern syntax, destination safety
    - global_settings and security value types and ranges

    Args:
        config: Parsed configuration.

    Returns:
        (errors, warnings) tuple of message lists. The config is valid
        when errors is empty.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(config, dict):
        errors.append("Root configuration must be an object")
        return errors, warnings

    if "rules" not in config:
        errors.append("Missing required 'rules' section")
        return errors, warnings

    rules = config["rules"]
    if not isinstance(rules, list):
        errors.append("'rules' must be an array")
        return errors, warnings

    if len(rules) > MAX_RULES:
        warnings.append(f"Too many rules ({len(rules)} > {MAX_RULES}). Consider simplifying.")

    for index, rule in enumerate(rules):
        _validate_rule(rule, index, errors, warnings)

    _validate_global_settings(config, errors)
    _validate_security_settings(config, errors)

    return errors, warnings


# ============================================================
# Dry-Run Mode
# ============================================================


def is_dry_run() -> bool:
    """Check if running in dry-run (simulation) mode.

    In dry-run mode, the hook logs what it WOULD redirect but emits
    nothing and creates no directories.

    Enable by setting environment variable:
        CLAUDE_HOOK_DRY_RUN=1

    Returns:
        True if dry-run mode is enabled.
    """
    value = os.environ.get(DRY_RUN_ENV, "").lower()
    return value in ("1", "true", "yes")


# ============================================================
# Logging with Rotation
# ============================================================


_log_suppressed: bool = False
"""Set by read-only callers (validator --explain) to keep log_redirect silent."""


def _rotate_log_if_needed(log_file: Path) -> None:
    """Rotate log file if it exceeds MAX_LOG_SIZE_BYTES.

    Keeps exactly one backup (.log.1). Silent fail on any error.
    """
    try:
        if not log_file.exists():
            return
        if log_file.stat().st_size < MAX_LOG_SIZE_BYTES:
            return

        backup_file = log_file.with_suffix(".log.1")
        # On Windows, the target must be removed first
        if backup_file.exists():
            backup_file.unlink()
        log_file.rename(backup_file)
    except OSError:
        pass


def log_redirect(level: str, message: str) -> None:
    """Log a redirect event to .claude/redirect/redirect.log.

    Log format:
        TIMESTAMP [LEVEL] [DRY-RUN] MESSAGE

    Silent fail on any error - never breaks hook execution.

    Args:
        level: Log level (INFO, WARN, ERROR, REDIRECT, SKIP, BLOCK)
        message: Message to log.
    """
    if _log_suppressed:
        return

    project_dir = get_project_dir()
    if not project_dir:
        return

    log_file = Path(project_dir) / ".claude" / "redirect" / "redirect.log"

    try:
        timestamp = datetime.now().isoformat(timespec="seconds")
        mode = "[DRY-RUN] " if is_dry_run() else ""
        line = f"{timestamp} [{level}] {mode}{message}\n"

        log_file.parent.mkdir(parents=True, exist_ok=True)
        _rotate_log_if_needed(log_file)

        with open(log_file, "a", encoding="utf-8") as f:
            f.write(line)
    except (OSError, ValueError):  # ValueError: unencodable path text
        pass


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display in logs, keeping the end of the path."""
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


# ============================================================
# Pattern Matching (File Names)
# ============================================================


def safe_regex_search(
    pattern: str,
    text: str,
    flags: int = 0,
    timeout: float = REGEX_TIMEOUT_SECONDS,
) -> "regex.Match | None":
    """Regex search with timeout defense against ReDoS.

    Args:
        pattern: Regular expression pattern.
        text: Text to search.
        flags: regex flags (regex.IGNORECASE, etc.).
        timeout: Timeout in seconds (default: REGEX_TIMEOUT_SECONDS).

    Returns:
        Match object if found, None otherwise.
        Returns None on timeout or invalid pattern (no redirect).
    """
    try:
        return regex.search(pattern, text, flags, timeout=timeout)
    except TimeoutError:
        log_redirect("WARN", f"Regex timeout ({timeout}s) for pattern: {pattern[:50]}")
        return None
    except regex.error as e:
        log_redirect("WARN", f"Invalid regex pattern '{pattern[:50]}': {e}")
        return None


def expand_braces(pattern: str) -> list[str]:
    """Expand {a,b} alternations in a glob pattern.

    Examples:
        "*.{md,txt}" -> ["*.md", "*.txt"]
        "{a,b}_{x,y}" -> ["a_x", "a_y", "b_x", "b_y"]
    """
    match = _BRACE_RE.search(pattern)
    if not match:
        return [pattern]

    expanded = []
    prefix, suffix = pattern[: match.start()], pattern[match.end() :]
    for alternative in match.group(1).split(","):
        expanded.extend(expand_braces(prefix + alternative + suffix))
    return expanded


def matches_pattern(pattern: str, filename: str, case_sensitive: bool = True) -> bool:
    """Match a filename against a rule pattern.

    Pattern forms, checked in this order:
    - "/regex/": regular expression search (timeout-guarded)
    - contains * ? [ or {: glob, with brace alternation
    - ".ext": suffix match
    - anything else: exact filename

    Args:
        pattern: Rule pattern.
        filename: Base name of the file being written.
        case_sensitive: False to compare case-insensitively.

    Returns:
        True if filename matches pattern.
    """
    if not isinstance(pattern, str) or not pattern:
        return False

    if is_regex_pattern(pattern):
        flags = 0 if case_sensitive else regex.IGNORECASE
        return safe_regex_search(pattern[1:-1], filename, flags) is not None

    if not case_sensitive:
        pattern = pattern.casefold()
        filename = filename.casefold()

    if any(ch in pattern for ch in _GLOB_CHARS):
        return any(fnmatch.fnmatchcase(filename, p) for p in expand_braces(pattern))

    if pattern.startswith("."):
        return filename.endswith(pattern)

    return filename == pattern


# ============================================================
# Rule Evaluation
# ============================================================


def _absolute(path: str, base: str | None = None) -> str:
    """Expand ~ and make path absolute (against base if given), normalized."""
    expanded = os.path.expanduser(path)
    if base is not None and not os.path.isabs(expanded):
        expanded = os.path.join(base, expanded)
    return os.path.normpath(os.path.abspath(expanded))


def is_path_within(path: str, root: str) -> bool:
    """Check path containment per component.

    "/etc/hosts" is within "/etc"; "/etc2/hosts" is not.
    """
    path_norm = os.path.normpath(path)
    root_norm = os.path.normpath(root)
    if path_norm == root_norm:
        return True
    return path_norm.startswith(root_norm.rstrip(os.sep) + os.sep)


def matches_rule(
    rule: dict, absolute_path: str, working_dir: str, case_sensitive: bool = True
) -> bool:
    """Check if a rule applies to the file being written.

    Args:
        rule: Rule object from config.
        absolute_path: Absolute path of the original write target.
        working_dir: Project working directory.
        case_sensitive: Pattern/exclusion case sensitivity.

    Returns:
        True if the rule is enabled, the pattern matches the file name,
        no exclusion matches, and the source location constraint holds.
    """
    if not isinstance(rule, dict) or not rule.get("enabled"):
        return False

    filename = os.path.basename(absolute_path)
    if not matches_pattern(rule.get("pattern"), filename, case_sensitive):
        return False

    exclude = rule.get("exclude") or []
    if isinstance(exclude, list):
        for excluded in exclude:
            if matches_pattern(excluded, filename, case_sensitive):
                return False

    source_location = rule.get("source_location") or "anywhere"
    if source_location == "root_only":
        parent = os.path.normpath(os.path.dirname(absolute_path))
        return parent == os.path.normpath(working_dir)

    # "anywhere" and unknown values
    return True


def apply_rule(rule: dict, absolute_path: str, working_dir: str) -> str | None:
    """Build the redirected path for a matching rule.

    Absolute destinations receive the file directly; relative ones are
    resolved against the working directory. The result is not
    normalized so traversal can still be detected by is_safe_destination().

    Returns:
        Redirected path, or None if the rule has no usable destination.
    """
    destination = rule.get("destination")
    if not isinstance(destination, str) or not destination:
        return None

    filename = os.path.basename(absolute_path)
    destination = os.path.expanduser(destination)

    if os.path.isabs(destination):
        return os.path.join(destination, filename)
    return os.path.join(working_dir, destination, filename)


def is_safe_destination(path: str, working_dir: str, config: dict) -> tuple[bool, str]:
    """Check that a redirect destination is safe to write to.

    Rejects:
    - any ".." component in the raw path (traversal attempt)
    - paths outside both the working directory and the home directory,
      checked on the normalized and the symlink-resolved path
    - built-in protected directories (PROTECTED_DESTINATIONS)
    - security.blocked_destinations entries
    - the active rules file itself

    Args:
        path: Candidate destination file path.
        working_dir: Project working directory.
        config: Loaded configuration.

    Returns:
        (safe, reason) tuple. reason is empty when safe.
    """
    if not isinstance(path, str) or not path or "\x00" in path:
        return False, "Invalid destination path"

    if ".." in path.replace("\\", "/").split("/"):
        return False, "Path traversal in destination"

    normalized = _absolute(path, working_dir)
    try:
        resolved = str(Path(normalized).resolve())
    except (OSError, RuntimeError) as e:
        log_redirect("WARN", f"Could not resolve destination {path}: {e}")
        return False, "Destination could not be resolved"

    work_abs = _absolute(working_dir)
    home_abs = _absolute("~")
    allowed_roots = (work_abs, home_abs)
    allowed_resolved = tuple(str(Path(root).resolve()) for root in allowed_roots)

    if not any(is_path_within(normalized, root) for root in allowed_roots):
        return False, "Destination is outside the project and home directories"
    if not any(is_path_within(resolved, root) for root in allowed_resolved):
        return False, "Destination resolves (symlink) outside the project and home directories"

    # A protected directory that holds the project itself (e.g. /usr/src/app) stays usable
    blocked = [
        protected
        for protected in PROTECTED_DESTINATIONS
        if not is_path_within(work_abs, _absolute(protected))
    ]
    configured = get_security_settings(config).get("blocked_destinations") or []
    if isinstance(configured, list):
        blocked.extend(b for b in configured if isinstance(b, str) and b)

    for blocked_path in blocked:
        blocked_abs = _absolute(blocked_path, work_abs)
        if is_path_within(normalized, blocked_abs) or is_path_within(resolved, blocked_abs):
            return False, f"Destination is inside blocked directory '{blocked_path}'"

    if _active_config_path and _absolute(_active_config_path) in (normalized, resolved):
        return False, "Destination is the redirect rules file"

    return True, ""


def is_extension_allowed(path: str, config: dict, case_sensitive: bool = True) -> bool:
    """Check security.allowed_extensions (empty or missing list allows all)."""
    allowed = get_security_settings(config).get("allowed_extensions")
    if not isinstance(allowed, list) or not allowed:
        return True
    filename = os.path.basename(path)
    if not case_sensitive:
        filename = filename.casefold()
    for ext in allowed:
        if not isinstance(ext, str) or not ext:
            continue
        if filename.endswith(ext if case_sensitive else ext.casefold()):
            return True
    return False


def explain_redirect(
    original_path: str, config: dict, working_dir: str
) -> tuple[str | None, str, str]:
    """Find the redirect destination for a write target, with the reason.

    Rules are scanned in config order; the first enabled, matching rule
    with a safe destination wins. A rule whose destination equals the
    original path means the file is already where it belongs, which
    ends the scan without a redirect.

    Args:
        original_path: file_path from the tool input (absolute or relative).
        config: Loaded configuration.
        working_dir: Project working directory.

    Returns:
        (redirected_path, rule_name, reason). redirected_path is None when
        nothing applies and reason says why.
    """
    rules = config.get("rules") if isinstance(config, dict) else None
    if not isinstance(rules, list) or not rules:
        return None, "", "No rules configured"

    absolute_path = _absolute(original_path, working_dir)
    case_sensitive = get_global_settings(config).get("case_sensitive", True) is not False

    if not is_extension_allowed(absolute_path, config, case_sensitive):
        log_redirect("SKIP", f"Extension not allowed: {truncate_path(original_path)}")
        return None, "", "Extension not allowed by security.allowed_extensions"

    rejected: list[str] = []
    for index, rule in enumerate(rules):
        if not matches_rule(rule, absolute_path, working_dir, case_sensitive):
            continue

        rule_name = rule.get("name") or f"rule-{index}"
        redirected = apply_rule(rule, absolute_path, working_dir)
        if redirected is None:
            log_redirect("WARN", f"Rule '{rule_name}' has no destination, skipping")
            rejected.append(f"Rule '{rule_name}': no destination")
            continue

        if os.path.normpath(redirected) == absolute_path:
            log_redirect("SKIP", f"Already in destination of '{rule_name}': {truncate_path(original_path)}")
            return None, "", f"Already in destination of rule '{rule_name}'"

        safe, reason = is_safe_destination(redirected, working_dir, config)
        if not safe:
            log_redirect("BLOCK", f"Rule '{rule_name}' -> {truncate_path(redirected)}: {reason}")
            rejected.append(f"Rule '{rule_name}': {reason}")
            continue

        return os.path.normpath(redirected), rule_name, ""

    if rejected:
        return None, "", "; ".join(rejected)
    return None, "", "No enabled rule matches"


def find_redirected_path(
    original_path: str, config: dict, working_dir: str
) -> tuple[str | None, str]:
    """Find the redirect destination for a write target.

    Returns:
        (redirected_path, rule_name), or (None, "") when nothing applies.
        See explain_redirect() for the scan order.
    """
    redirected, rule_name, _ = explain_redirect(original_path, config, working_dir)
    return redirected, rule_name


# ============================================================
# Pre-Write Checks and Side Effects
# ============================================================


def validate_file_size(file_path: str, config: dict, working_dir: str) -> bool:
    """Check security.max_file_size_mb against an existing original file.

    New files cannot be measured in a pre-write hook and are allowed.

    Returns:
        False only when the existing file is larger than the limit.
    """
    max_size_mb = get_security_settings(config).get("max_file_size_mb")
    if max_size_mb is None:
        return True
    if isinstance(max_size_mb, bool) or not isinstance(max_size_mb, (int, float)):
        log_redirect("WARN", f"Ignoring invalid max_file_size_mb: {max_size_mb!r}")
        return True

    absolute_path = _absolute(file_path, working_dir)
    if not os.path.isfile(absolute_path):
        return True

    try:
        file_size = os.path.getsize(absolute_path)
    except OSError as e:
        log_redirect("WARN", f"Error checking file size of {truncate_path(file_path)}: {e}")
        return True

    max_size_bytes = max_size_mb * 1024 * 1024
    if file_size > max_size_bytes:
        log_redirect(
            "SKIP",
            f"File size ({file_size} bytes) exceeds maximum allowed size ({max_size_bytes} bytes)",
        )
        return False
    return True


def ensure_target_directory(target_path: str, config: dict) -> None:
    """Create the destination's parent directory if create_directories is set."""
    if get_global_settings(config).get("create_directories") is not True:
        return

    target_dir = os.path.dirname(target_path)
    try:
        os.makedirs(target_dir, exist_ok=True)
    except OSError as e:
        log_redirect("WARN", f"Failed to create directory {target_dir}: {e}")


def backup_existing_destination(target_path: str, config: dict) -> str | None:
    """Copy an existing destination file to <name>.bak if backup_original is set.

    Returns:
        Backup path, or None if no backup was made.
    """
    if get_global_settings(config).get("backup_original") is not True:
        return None
    if not os.path.isfile(target_path):
        return None

    backup_path = target_path + ".bak"
    try:
        shutil.copy2(target_path, backup_path)
    except OSError as e:
        log_redirect("WARN", f"Failed to back up {truncate_path(target_path)}: {e}")
        return None
    log_redirect("INFO", f"Backed up existing destination to {truncate_path(backup_path)}")
    return backup_path


def _parse_depth(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def get_loop_count(input_data: dict) -> int:
    """Read the redirect depth from the process environment and the event.

    The larger of the two values wins.
    """
    depth = _parse_depth(os.environ.get(LOOP_DETECTION_KEY, "0"))
    environment = input_data.get("environment") if isinstance(input_data, dict) else None
    if isinstance(environment, dict):
        depth = max(depth, _parse_depth(environment.get(LOOP_DETECTION_KEY, "0")))
    return depth


# ============================================================
# Hook Response Helpers
# ============================================================


def deny_response(reason: str) -> dict[str, Any]:
    """Generate a deny response for PreToolUse hook."""
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": f"[BLOCKED] {reason}",
        }
    }


def make_error_response(action: str, reason: str) -> dict[str, Any] | None:
    """Create the response for an unexpected hook error.

    Args:
        action: global_settings.on_error value.
        reason: Human-readable reason.

    Returns:
        deny response for "deny", None for "allow" (no output = proceed).
    """
    if action == "deny":
        return deny_response(reason)
    return None


def redirect_response(
    input_data: dict,
    original_path: str,
    redirected_path: str,
    rule_name: str,
    loop_count: int,
    config: dict,
) -> dict[str, Any]:
    """Build the modified event payload for a redirect.

    The payload is the original event with tool_input.file_path replaced,
    the new redirect depth under "environment", and a hookSpecificOutput
    carrying the rewritten tool input as updatedInput.
    """
    settings = get_global_settings(config)

    payload = copy.deepcopy(input_data)
    tool_input = payload.get("tool_input")
    tool_input = dict(tool_input) if isinstance(tool_input, dict) else {}
    tool_input["file_path"] = redirected_path
    payload["tool_input"] = tool_input

    environment = payload.get("environment")
    if not isinstance(environment, dict):
        environment = {}
    environment[LOOP_DETECTION_KEY] = str(loop_count)
    payload["environment"] = environment

    decision = "ask" if settings.get("require_confirmation") is True else "allow"
    hook_output = {
        "hookEventName": "PreToolUse",
        "permissionDecision": decision,
        "permissionDecisionReason": f"File pattern matched redirection rule '{rule_name}'",
        "updatedInput": tool_input,
    }

    if settings.get("notify_on_redirect") is True:
        payload["suppressOutput"] = True
        payload["systemMessage"] = f"File redirected: {original_path} -> {redirected_path}"
        hook_output["additionalContext"] = "File automatically redirected by fs-mv plugin"

    payload["hookSpecificOutput"] = hook_output
    return payload


# ============================================================
# Hook Orchestration
# ============================================================


def run_redirect_hook(tool_name: str) -> None:
    """Run the redirect decision for a Write tool event read from stdin.

    This is the main entry point for the write redirect hook. Every
    path out of this function exits 0; stdout carries a JSON payload
    only when the write is redirected.

    Args:
        tool_name: The tool name to act on ("Write").
    """
    if sys.stdin.isatty():
        sys.exit(0)

    try:
        input_data = json.load(sys.stdin)
    except ValueError as e:  # JSONDecodeError, UnicodeDecodeError
        log_redirect("WARN", f"Malformed hook input: {e}")
        sys.exit(0)

    if not isinstance(input_data, dict):
        log_redirect("WARN", f"Invalid hook input type: {type(input_data).__name__}")
        sys.exit(0)

    actual_tool = input_data.get("tool_name", "")
    if not isinstance(actual_tool, str) or actual_tool.lower() != tool_name.lower():
        sys.exit(0)

    tool_input = input_data.get("tool_input")
    if not isinstance(tool_input, dict):
        log_redirect("WARN", f"Invalid tool_input type: {type(tool_input).__name__}")
        sys.exit(0)

    file_path = tool_input.get("file_path")
    if not isinstance(file_path, str) or not file_path:
        sys.exit(0)

    if "\x00" in file_path:
        log_redirect("WARN", f"Null byte in path ignored: {truncate_path(file_path)}")
        sys.exit(0)

    config = load_redirect_config()
    if not config.get("rules"):
        sys.exit(0)

    path_preview = truncate_path(file_path)

    loop_count = get_loop_count(input_data)
    max_depth = max_redirect_depth(config)
    if loop_count >= max_depth:
        log_redirect("SKIP", f"Redirect depth {loop_count} reached limit {max_depth}: {path_preview}")
        sys.exit(0)
    loop_count += 1

    working_dir = get_working_dir(input_data)

    if not validate_file_size(file_path, config, working_dir):
        sys.exit(0)

    redirected_path, rule_name = find_redirected_path(file_path, config, working_dir)
    if not redirected_path:
        sys.exit(0)

    if is_dry_run():
        log_redirect("REDIRECT", f"Would redirect {path_preview} -> {truncate_path(redirected_path)} ({rule_name})")
        sys.exit(0)

    ensure_target_directory(redirected_path, config)
    backup_existing_destination(redirected_path, config)

    log_redirect("REDIRECT", f"{path_preview} -> {truncate_path(redirected_path)} ({rule_name})")
    response = redirect_response(
        input_data, file_path, redirected_path, rule_name, loop_count, config
    )
    print(json.dumps(response))
    sys.exit(0)


# ============================================================
# Module Self-Test (when run directly)
# ============================================================


if __name__ == "__main__":
    print("_redirect_utils.py - Module loaded successfully")
    print(f"Project dir: {get_project_dir()}")
    print(f"Plugin root: {_get_plugin_root()}")
    print(f"Dry-run mode: {is_dry_run()}")
    print(f"Rules loaded: {len(load_redirect_config().get('rules', []))}")
    print(f"Active config path: {get_active_config_path()}")
