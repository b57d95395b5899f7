"""
Entry point for running as module: python -m patchmanager
"""

import sys

from .monitor import setup_runtime_monitor, monitor_action


def main():
    """Main entry point"""
    logger = setup_runtime_monitor()
    monitor_action("startup: module entry", logger=logger)

    from .cli import run_cli
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
