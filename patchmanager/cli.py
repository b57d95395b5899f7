"""
Command-line interface for the patch installer
"""

import argparse
import logging
import sys

from . import __version__
from .models import GameVersion, ProgressEvent, StatusEvent
from .installer import InstallationManager
from .monitor import setup_monitoring, log_event, tail_events
from .settings import DEFAULT_SETTINGS_PATH, load_settings
from .shared_config import AVAILABLE_BRANCHES, ensure_directories


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        prog='patchmanager',
        description='Game patch installer - discover, download and apply incremental patches',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s --list-versions
  %(prog)s --branch beta --install latest
  %(prog)s --install 7 --use-mirror
  %(prog)s --play MyName
        '''
    )

    parser.add_argument(
        '--branch', '-b',
        type=str,
        help=f'Release branch (known: {", ".join(AVAILABLE_BRANCHES)}; default from settings)'
    )

    ops = parser.add_argument_group('Operations')

    ops.add_argument(
        '--list-versions', '-l',
        action='store_true',
        help='Probe the server and list installable versions'
    )

    ops.add_argument(
        '--install', '-i',
        type=str,
        metavar='VERSION',
        help='Install a version number or "latest"'
    )

    ops.add_argument(
        '--play', '-p',
        type=str,
        metavar='NAME',
        help='Install the selected version (default: latest) and launch the client as NAME'
    )

    ops.add_argument(
        '--status',
        action='store_true',
        help='Show the installed version of the branch'
    )

    opts = parser.add_argument_group('Options')

    opts.add_argument(
        '--use-mirror',
        action='store_true',
        help='Prefer the configured mirror over the primary server'
    )

    opts.add_argument(
        '--workers', '-w',
        type=int,
        help='Parallel probing lanes during discovery (default from settings)'
    )

    opts.add_argument(
        '--settings',
        type=str,
        default=DEFAULT_SETTINGS_PATH,
        help='Settings file (default: %(default)s)'
    )

    opts.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress progress output'
    )

    opts.add_argument(
        '--monitor',
        action='store_true',
        help='Echo log events to stderr while running'
    )

    opts.add_argument(
        '--monitor-file',
        type=str,
        help='Custom log file path'
    )

    opts.add_argument(
        '--monitor-tail',
        action='store_true',
        help='Tail the log in realtime (no other action)'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser


def _printer(quiet: bool):
    def on_event(event):
        if quiet:
            return
        if isinstance(event, StatusEvent):
            print(f"\n{event.message}")
        elif isinstance(event, ProgressEvent):
            if event.indeterminate:
                print("   working...", end='\r')
            else:
                print(f"   {event.percent:5.1f}%", end='\r')
    return on_event


def run_cli(args=None):
    """Run the CLI"""
    parser = create_parser()
    args = parser.parse_args(args)

    setup_monitoring(log_file=args.monitor_file, echo=args.monitor)

    if args.monitor_tail:
        tail_events(log_file=args.monitor_file)
        return 0

    log_event('cli.start', 'CLI execution started')

    if not (args.list_versions or args.install or args.play or args.status):
        parser.print_help()
        return 1

    settings = load_settings(args.settings)
    if args.use_mirror:
        settings['distribution']['use_mirror'] = True
    if args.workers:
        settings['discovery']['workers'] = args.workers
    branch = args.branch or settings['branch']

    ensure_directories(settings['launcher_root'], settings['install_root'])
    manager = InstallationManager.from_settings(settings)
    on_event = _printer(args.quiet)

    if args.status:
        state = manager.branch_state(branch)
        print(f"Branch {branch}: {state.state.name.lower().replace('_', ' ')} "
              f"(installed version {state.marker})")
        if not (args.list_versions or args.install or args.play):
            return 0

    wanted = args.install or 'latest'
    versions = []
    if args.list_versions or wanted == 'latest':
        result = manager.discover(branch, on_event=on_event)
        versions = result.versions
        if not args.quiet:
            print()
        if args.list_versions:
            print(f"\nVersions on {branch} ({len(result.patch_set)} patches found):")
            for v in versions:
                print(f"  {v.name:<14} v{v.version}")
            if not (args.install or args.play):
                return 0

    if wanted == 'latest':
        target = versions[0]
    else:
        try:
            number = int(wanted)
        except ValueError:
            number = 0
        if number < 1:
            print(f"Error: unknown version '{wanted}'", file=sys.stderr)
            return 1
        target = GameVersion(version=number, name=f"Version {number}", branch=branch)

    if args.play:
        result = manager.play(target, args.play, on_event=on_event)
    else:
        result = manager.install(target, on_event=on_event)

    if not args.quiet:
        print()
    if not result.success:
        log_event('cli.error', result.error, logging.ERROR)
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    print(f"{branch}: version {result.marker} installed")
    return 0


def main():
    """Entry point"""
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
