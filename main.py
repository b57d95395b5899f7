#!/usr/bin/env python3
"""
Game Patch Installer
Discovers, downloads and applies incremental game patches.

Usage:
    python main.py --list-versions
    python main.py --branch beta --install latest
    python main.py --play <name>

For CLI help: python main.py --help
"""

import sys
import os

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from patchmanager.monitor import setup_runtime_monitor, monitor_action


def main():
    """Main entry point"""
    logger = setup_runtime_monitor()
    monitor_action("startup: main.py entry", logger=logger)

    from patchmanager.cli import run_cli
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
