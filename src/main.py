"""Command-line entry point for the Ophiuchus quest service."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Any, Sequence, TextIO

import uvicorn

from ophiuchus import (
    ContentGenerator,
    LeaderboardAggregator,
    LLMProviderRegistry,
    QuestError,
    configure_logging,
    parse_cli_options,
)
from ophiuchus.api import OphiuchusSettings, create_app, create_service, create_store_handle
from ophiuchus.llm_providers import register_builtin_providers


logger = logging.getLogger(__name__)


def _build_generator(
    args: argparse.Namespace, settings: OphiuchusSettings
) -> ContentGenerator | None:
    """Build the generator named on the command line, or ``None`` to use settings."""

    if args.llm_options and not args.llm_provider:
        print(
            "--llm-option was provided but no --llm-provider was specified. "
            "Options cannot be applied without a provider."
        )
        raise SystemExit(2)
    if not args.llm_provider:
        return None

    registry = LLMProviderRegistry()
    register_builtin_providers(registry)
    options: dict[str, Any] = {}
    if settings.llm_timeout is not None:
        options["timeout"] = settings.llm_timeout
    try:
        options.update(parse_cli_options(args.llm_options or []))
        return registry.create_generator(
            args.llm_provider, models=settings.llm_models, options=options
        )
    except Exception as exc:
        print(f"Failed to initialise LLM provider '{args.llm_provider}': {exc}")
        raise SystemExit(2) from exc


def serve(args: argparse.Namespace, settings: OphiuchusSettings) -> None:
    """Run the HTTP API under ``uvicorn``."""

    handle = create_store_handle(settings)
    service = create_service(settings, store=handle, generator=_build_generator(args, settings))
    app = create_app(settings, service=service, store=handle)
    logger.info("Serving the quest API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


def print_leaderboard(
    args: argparse.Namespace,
    settings: OphiuchusSettings,
    output: TextIO | None = None,
) -> None:
    output = output or sys.stdout
    handle = create_store_handle(settings)
    try:
        aggregator = LeaderboardAggregator(handle)
        entries = aggregator.top_players(args.limit, args.skip)
        if not entries:
            print("No archived quests yet.", file=output)
            return
        for index, entry in enumerate(entries):
            print(
                f"{args.skip + index + 1:>3}. {entry.username or entry.user_id}: "
                f"{entry.total_points} points over {entry.total_games_completed} quests "
                f"(best {entry.highest_single_game_points})",
                file=output,
            )
    finally:
        handle.close()


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ophiuchus musical scavenger hunt")
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level; defaults to OPHIUCHUS_LOG_LEVEL or INFO.",
    )
    parser.add_argument(
        "--llm-provider",
        type=str,
        help=(
            "Identifier of the LLM provider generating puzzle content. "
            "Accepts registered names or module paths (module:factory). "
            "Defaults to OPHIUCHUS_LLM_PROVIDER."
        ),
    )
    parser.add_argument(
        "--llm-option",
        dest="llm_options",
        action="append",
        metavar="KEY=VALUE",
        help=(
            "Additional option to pass to the LLM provider factory. "
            "May be supplied multiple times."
        ),
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve_parser = subcommands.add_parser("serve", help="Run the HTTP API.")
    serve_parser.add_argument("--host", help="Interface to bind; defaults to OPHIUCHUS_API_HOST.")
    serve_parser.add_argument(
        "--port", type=int, help="Port to listen on; defaults to OPHIUCHUS_API_PORT."
    )

    board_parser = subcommands.add_parser(
        "leaderboard", help="Print the top players from the configured store."
    )
    board_parser.add_argument("--limit", type=int, default=10, help="Entries to show (1-100).")
    board_parser.add_argument("--skip", type=int, default=0, help="Entries to skip.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Dispatch the selected sub-command."""

    args = _parse_args(argv)
    try:
        settings = OphiuchusSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        raise SystemExit(2) from exc

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if getattr(args, "host", None):
        overrides["api_host"] = args.host
    if getattr(args, "port", None):
        overrides["api_port"] = args.port
    if overrides:
        settings = replace(settings, **overrides)
    configure_logging(settings.log_level)

    if args.command == "serve":
        serve(args, settings)
        return
    try:
        print_leaderboard(args, settings)
    except QuestError as exc:
        print(f"Failed to read the leaderboard: {exc.message}")
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
