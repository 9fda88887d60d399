#!/usr/bin/env python3
"""
SuperRay TUI - Terminal client for Xray proxies with live traffic monitoring
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from superray_tui.utils.system_check import verify_system_requirements


def main():
    """Main entry point"""
    ok, errors = verify_system_requirements()
    if not ok:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        sys.exit(1)

    from superray_tui.cli.interface import main as cli_main
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
