"""
storybook-eyes command line
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from storybook_eyes import __version__
from storybook_eyes.config.config import Config, load_config
from storybook_eyes.exceptions import ConfigurationError
from storybook_eyes.models import TestResult
from storybook_eyes.runner import run_storybook
from storybook_eyes.utils.logger import get_logger, setup_logging
from storybook_eyes.utils.shutdown import shutdown_coordinator

logger = get_logger("storybook_eyes.cli")

EXIT_TESTS_FAILED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='storybook-eyes',
        description='Visual regression tests for every Storybook story',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                         # Start Storybook, test all stories
  %(prog)s --conf ci.config.json   # Use another configuration file
  %(prog)s --static                # Test an existing storybook-static build
  %(prog)s --build --exitcode      # Rebuild, exit with 130 when a test fails
        """
    )

    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--conf', '-c', metavar='PATH',
                        help='Path to configuration file (default: storybook-eyes.config.json)')
    parser.add_argument('--exitcode', '-e', action='store_true',
                        help='If tests failed close with non-zero exit code')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--local', '-l', action='store_true',
                      help='Test against a Storybook dev server (the default unless the config sets useStaticBuild)')
    mode.add_argument('--static', '-s', action='store_true',
                      help='Test the static build in storybookOutputDir instead of a dev server')
    mode.add_argument('--build', '-b', action='store_true',
                      help='Run build-storybook, then test the static build (implies --static)')
    parser.add_argument('--info', '-d', action='store_true',
                        help='Display info about current running')
    parser.add_argument('--verbose', '--dd', action='store_true',
                        help='Display data about current running')
    parser.add_argument('--debug', '--ddd', action='store_true',
                        help='Display logs and Storybook output for debugging')
    return parser


def apply_arguments(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags override the configuration file"""
    changes = {}
    if args.local:
        changes['use_static_build'] = False
    if args.static or args.build:
        changes['use_static_build'] = True
    if args.build:
        changes['skip_storybook_build'] = False

    if args.debug:
        changes['show_logs'] = 'verbose'
        changes['show_storybook_output'] = True
    elif args.verbose:
        changes['show_logs'] = 'verbose'
    elif args.info:
        changes['show_logs'] = True

    return config.updated(**changes) if changes else config


def format_results(results: Sequence[TestResult]) -> List[str]:
    """Report lines: one per story plus the batch link"""
    lines = ['[EYES: TEST RESULTS]:']
    lines.extend(result.describe() for result in results)
    if results and results[0].batch_url:
        lines.append(f'See details at {results[0].batch_url}')
    return lines


def has_failures(results: Sequence[TestResult]) -> bool:
    return any(not result.is_passed for result in results)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main script entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_arguments(load_config(args.conf), args)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    setup_logging(config.show_logs)
    shutdown_coordinator.install()

    try:
        results = asyncio.run(run_storybook(config))
    except Exception as e:
        logger.debug("Run failed", exc_info=True)
        print(f"❌ {e}", file=sys.stderr)
        if not args.debug:
            print('Run with --debug flag to see more logs.', file=sys.stderr)
        return 1

    if not results:
        print('Test is finished but no results returned.')
        return 0

    print('\n'.join(format_results(results)))
    if args.exitcode and has_failures(results):
        return EXIT_TESTS_FAILED
    return 0


if __name__ == '__main__':
    sys.exit(main())
