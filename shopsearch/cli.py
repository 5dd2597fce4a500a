#!/usr/bin/env python3
"""Command-line interface for shopsearch.

Commands:
- search: Search the configured product sources and print merged JSON
- sources: List the registered sources
- validate: Validate configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from shopsearch.core.config import Config
from shopsearch.core.errors import ShopSearchError
from shopsearch.core.logging_setup import configure_logging
from shopsearch.core.registry import build_orchestrator, build_registry

logger = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Multi-source product search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shopsearch search "wireless headphones" --max-results 5
  shopsearch search "espresso machine" --sources serpapi --no-enrich
  shopsearch sources
  shopsearch validate --strict
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a YAML or TOML source registry (default: auto-detect)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write logs to this file as well (rotated)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: from configuration)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Use JSON structured logging format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Search
    search_parser = subparsers.add_parser("search", help="Search for products")
    search_parser.add_argument("query", help="Product search query")
    search_parser.add_argument(
        "--sources",
        help="Comma-separated source ids (default: configured default sources)",
    )
    search_parser.add_argument(
        "--strategy",
        choices=["interleave", "sequential", "priority"],
        help="How to merge per-source results",
    )
    search_parser.add_argument("--max-results", type=int, help="Maximum merged products (1-50)")
    search_parser.add_argument(
        "--results-per-source", type=int, help="Products requested from each source (1-20)"
    )
    search_parser.add_argument("--timeout-ms", type=int, help="Per-source timeout (100-5000)")
    search_parser.add_argument(
        "--sequential",
        action="store_true",
        help="Call sources one after another instead of in parallel",
    )
    search_parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip enrichment of the top product",
    )
    search_parser.add_argument(
        "--no-fallback",
        action="store_true",
        help="Fail the whole search when a source times out",
    )
    search_parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Bypass result caches for this search",
    )

    # Sources
    sources_parser = subparsers.add_parser("sources", help="List registered sources")
    sources_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Validate
    validate_parser = subparsers.add_parser("validate", help="Validate configuration")
    validate_parser.add_argument(
        "--strict", action="store_true", help="Also fail on warnings"
    )

    return parser.parse_args(argv)


def build_search_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI flags into orchestrator options; unset flags keep the configured defaults."""
    options: Dict[str, Any] = {
        "sources": args.sources,
        "merge_strategy": args.strategy,
        "max_results": args.max_results,
        "results_per_source": args.results_per_source,
        "timeout_ms": args.timeout_ms,
    }
    if args.sequential:
        options["parallel"] = False
    if args.no_enrich:
        options["include_enrichment"] = False
    if args.no_fallback:
        options["fallback_on_timeout"] = False
    if args.no_cache:
        options["no_cache"] = True
    return {key: value for key, value in options.items() if value is not None}


async def handle_search(args: argparse.Namespace, config: Config) -> int:
    """Handle the search command."""
    orchestrator = build_orchestrator(config)
    try:
        result = await orchestrator.search(args.query, build_search_options(args))
    finally:
        await orchestrator.aclose()

    print(result.to_json())
    return 1 if result.is_failed else 0


async def handle_sources(args: argparse.Namespace, config: Config) -> int:
    """Handle the sources command."""
    registry = build_registry(config)
    try:
        entries = [
            {
                "id": adapter.source_id,
                "name": adapter.display_name,
                "priority": adapter.priority,
                "search": adapter.supports_search,
                "enrichment": adapter.supports_enrichment,
            }
            for adapter in sorted(registry, key=lambda a: a.priority)
        ]
    finally:
        await registry.aclose()

    if args.json:
        print(json.dumps(entries, indent=2))
        return 0

    for entry in entries:
        roles = [role for role in ("search", "enrichment") if entry[role]]
        print(f"{entry['priority']:>3}  {entry['id']:<12} {entry['name']} ({', '.join(roles)})")
    return 0


def handle_validate(args: argparse.Namespace, config: Config) -> int:
    """Handle the validate command."""
    result = config.validate()

    print(result)

    if not result.is_valid:
        return 1
    if args.strict and result.warnings:
        return 1
    return 0


async def main_async(args: argparse.Namespace, config: Optional[Config] = None) -> int:
    """Main async entry point.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    config = config or Config(str(args.config) if args.config else None)

    log_level = args.log_level or str(config.get("logging.level", "INFO")).upper()
    log_file = args.log_file or (Path(config.get("logging.file")) if config.get("logging.file") else None)
    configure_logging(
        log_file=log_file,
        level=getattr(logging, log_level, logging.INFO),
        use_json=args.json_logs or bool(config.get("logging.json", False)),
        console_output=True,
    )
    logger.info("shopsearch CLI started with command: %s", args.command)

    if args.command == "search":
        return await handle_search(args, config)
    elif args.command == "sources":
        return await handle_sources(args, config)
    elif args.command == "validate":
        return handle_validate(args, config)

    return 2


def main() -> None:
    args = parse_args(sys.argv[1:])
    try:
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nAborted by user")
        sys.exit(130)
    except ShopSearchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
