import argparse
import asyncio
import functools
import json
import logging
import sys

from . import __version__
from .config import load_config
from .formatter import format_table
from .mcp import serve
from .quota import SUPPORTED_PROVIDERS, fetch_all_rate_limits
from .rows import build_rows

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-quota",
        description="Show quota and rate limit usage of AI coding agents.",
    )
    parser.add_argument(
        "providers",
        nargs="*",
        metavar="provider",
        help=f"Providers to check (default: all of {', '.join(SUPPORTED_PROVIDERS)})",
    )
    parser.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    parser.add_argument("--quiet", action="store_true", help="Print only the summary line")
    parser.add_argument("--verbose", action="store_true", help="Log debug details to stderr")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-provider timeout in seconds (default: from config, 10s)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration file (default: ~/.ai_quota_config.json)",
    )
    parser.add_argument("--mcp", action="store_true", help="Run as an MCP server on stdio")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    unknown = [p for p in args.providers if p not in SUPPORTED_PROVIDERS]
    if unknown:
        print(f"Error: unknown provider(s): {', '.join(unknown)}", file=sys.stderr)
        print(f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}", file=sys.stderr)
        return 1

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: invalid config file: {e}", file=sys.stderr)
        return 1

    if args.mcp:
        fetch = functools.partial(fetch_all_rate_limits, timeout_seconds=args.timeout, config=config)
        await serve(sys.stdin, sys.stdout, fetch)
        return 0

    requested = args.providers or list(SUPPORTED_PROVIDERS)
    report = await fetch_all_rate_limits(requested, timeout_seconds=args.timeout, config=config)

    if args.json:
        print(json.dumps(report.to_json_dict(), indent=2))
    else:
        if not args.quiet:
            shown = [p for p in requested if config.provider(p).enabled]
            print(format_table(build_rows(report.results, shown)))
            print()
        print(f"{report.summary.status.upper()}: {report.summary.message}")

    return 1 if report.has_errors else 0


def cli() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
