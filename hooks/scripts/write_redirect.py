#!/usr/bin/env python3
"""Write Redirect Hook.

Redirects Write tool targets to configured directories by:
1. Matching the file name against redirect rules (glob, extension, exact, /regex/)
2. Applying exclusions and source location constraints
3. Rejecting unsafe destinations (traversal, protected or blocked directories)
4. Emitting the event payload with the rewritten file_path

Design Principles:
- Fail-Open: If the redirect system fails, the original write proceeds
  (unless global_settings.on_error is "deny")
- Use shared utilities from _redirect_utils.py
- Thin wrapper: All logic in run_redirect_hook()
"""

import json
import os
import sys
import traceback
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _redirect_utils import (
        get_error_action,
        log_redirect,
        make_error_response,
        run_redirect_hook,
    )
except ImportError as e:
    # Fail-open: redirect system unavailable = write proceeds unchanged
    print(f"fs-mv: redirect system unavailable: {e}", file=sys.stderr)
    sys.exit(0)


def main() -> None:
    """Main hook entry point."""
    run_redirect_hook("Write")


def run() -> None:
    """Run main() and apply the on_error policy if it crashes. Always exits 0."""
    try:
        main()
    except Exception as e:
        log_redirect("ERROR", f"Write redirect error: {type(e).__name__}: {e}")
        print(f"File redirect error: {e}", file=sys.stderr)
        if os.environ.get("DEBUG"):
            traceback.print_exc(file=sys.stderr)
        try:
            response = make_error_response(get_error_action(), f"Redirect system error: {e}")
        except Exception as inner:
            # on_error lookup failed: fall back to the default (allow)
            log_redirect("ERROR", f"on_error lookup failed: {inner}")
            response = None
        if response is not None:
            print(json.dumps(response))
        sys.exit(0)


if __name__ == "__main__":
    run()
