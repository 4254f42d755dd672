#!/usr/bin/env python3
"""Redirect rules validator.

Checks a redirect rules file for structural and semantic problems and
optionally explains where a given path would be redirected.

Usage:
    validate_redirect_config.py [CONFIG] [--json] [--explain PATH]

Without CONFIG, the hook's resolution chain is used:
    $CLAUDE_PROJECT_DIR/.claude/redirect/rules.json
    $CLAUDE_PLUGIN_ROOT/assets/redirect-rules.default.json

Exit status is 0 when the configuration is valid, 1 otherwise.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent))

import _redirect_utils  # noqa: E402
from _redirect_utils import (  # noqa: E402
    explain_redirect,
    find_config_path,
    get_working_dir,
    validate_redirect_config,
)


def validate_config_file(config_path: Path | None) -> dict[str, Any]:
    """Validate a rules file.

    Args:
        config_path: Rules file, or None if the resolution chain found nothing.

    Returns:
        Result dict with valid, errors, warnings, config_file, rules_count.
        The parsed config is included under "config" when it could be read.
    """
    result: dict[str, Any] = {
        "valid": False,
        "errors": [],
        "warnings": [],
        "config_file": str(config_path) if config_path else None,
        "rules_count": 0,
    }

    if config_path is None or not config_path.is_file():
        result["errors"].append("Configuration file not found")
        return result

    try:
        with open(config_path, encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        result["errors"].append(f"Invalid JSON: {e}")
        return result
    except OSError as e:
        result["errors"].append(f"Cannot read configuration: {e}")
        return result

    errors, warnings = validate_redirect_config(config)
    result["errors"] = errors
    result["warnings"] = warnings
    result["valid"] = not errors
    if isinstance(config, dict) and isinstance(config.get("rules"), list):
        result["rules_count"] = len(config["rules"])
    result["config"] = config
    return result


def explain_path(file_path: str, config: dict) -> str:
    """Describe where file_path would be redirected, or why it would not be.

    Callers wanting no log output wrap this with _redirect_utils._log_suppressed
    (see _explain_all()).
    """
    working_dir = get_working_dir()
    redirected, rule_name, reason = explain_redirect(file_path, config, working_dir)
    if redirected is None:
        return f"{file_path}: not redirected ({reason})"
    return f"{file_path} -> {redirected} (rule '{rule_name}')"


def _explain_all(paths: list[str], config: dict, config_path: Path) -> list[str]:
    """Explain paths against config as the hook would see it, without logging."""
    saved_path = _redirect_utils._active_config_path
    saved_suppressed = _redirect_utils._log_suppressed
    # The hook refuses to redirect onto the rules file it loaded
    _redirect_utils._active_config_path = str(config_path.resolve())
    _redirect_utils._log_suppressed = True
    try:
        return [explain_path(p, config) for p in paths]
    finally:
        _redirect_utils._active_config_path = saved_path
        _redirect_utils._log_suppressed = saved_suppressed


def print_report(result: dict[str, Any]) -> None:
    print(f"Configuration validation for: {result['config_file']}")
    print("=" * 50)

    if result["valid"]:
        print("[OK] Configuration is valid")
        print(f"Rules loaded: {result['rules_count']}")
    else:
        print("[ERROR] Configuration has errors")

    if result["errors"]:
        print("\nErrors:")
        for error in result["errors"]:
            print(f"  [ERROR] {error}")

    if result["warnings"]:
        print("\nWarnings:")
        for warning in result["warnings"]:
            print(f"  [WARN] {warning}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate fs-mv redirect rules.")
    parser.add_argument("config", nargs="?", default=None, help="Rules file (default: hook resolution chain)")
    parser.add_argument("--json", action="store_true", help="Emit a machine-readable report to stdout.")
    parser.add_argument("--explain", metavar="PATH", action="append", default=[],
                        help="Show where PATH would be redirected (repeatable).")
    args = parser.parse_args(argv)

    config_path = Path(args.config).expanduser() if args.config else find_config_path()
    result = validate_config_file(config_path)
    config = result.pop("config", None)

    explanations = []
    if args.explain and isinstance(config, dict):
        explanations = _explain_all(args.explain, config, config_path)

    if args.json:
        if args.explain:
            result["explain"] = explanations
        print(json.dumps(result, indent=2))
    else:
        print_report(result)
        if explanations:
            print("\nRedirects:")
            for line in explanations:
                print(f"  {line}")

    return 0 if result["valid"] else 1


if __name__ == "__main__":
    sys.exit(main())
