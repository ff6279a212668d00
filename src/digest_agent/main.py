from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime

from digest_agent.config import configure_langsmith_env, get_settings
from digest_agent.logging import setup_logging
from digest_agent.pipeline.factory import build_services
from digest_agent.scheduler import compute_next_run
from digest_agent.schemas.article import sources_from_urls
from digest_agent.schemas.run import RunStage

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RSS digest agent")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the pipeline once")
    run_parser.add_argument("--force-fetch", action="store_true", help="Include articles already processed")
    mode = run_parser.add_mutually_exclusive_group()
    mode.add_argument("--draft", dest="draft_mode", action="store_true", default=None, help="Save the post as draft")
    mode.add_argument("--publish", dest="draft_mode", action="store_false", help="Publish the post")
    run_parser.add_argument("--verbose", action="store_true", help="Enable debug logs")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API and the daily scheduler")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--no-scheduler", action="store_true", help="Do not start the daily scheduler")
    serve_parser.add_argument("--verbose", action="store_true", help="Enable debug logs")

    subparsers.add_parser("next-run", help="Print the next scheduled run time")
    subparsers.add_parser("test-feeds", help="Check that the configured feeds are reachable")
    subparsers.add_parser("check-api-key", help="Check the configured OpenAI API key")

    return parser


def run_pipeline(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_langsmith_env(settings)

    missing_fields = settings.missing_required_runtime_fields()
    if missing_fields:
        joined = ", ".join(missing_fields)
        logger.error("Configuration error: missing required .env values: %s", joined)
        print(f"Configuration error: missing required .env values: {joined}")
        return 2

    services = build_services(settings)
    # no event loop here, so the trigger runs the pipeline to completion
    result = services.trigger.trigger(force_fetch=bool(args.force_fetch), draft_mode=args.draft_mode)
    if not result.started:
        print(f"Run {result.run_id} is already in progress")
        return 1

    final = services.status.get(result.run_id)
    if final is None:
        print(f"Run {result.run_id}: status expired")
        return 1

    print(f"Run {final.run_id}: {final.stage.value} - {final.message}")
    return 0 if final.stage == RunStage.COMPLETE else 1


async def check_feeds() -> int:
    settings = get_settings()
    services = build_services(settings)
    results = await services.fetcher.test_feeds(sources_from_urls(settings.feed_urls))
    for result in results:
        print(f"[{result.status}] {result.url}: {result.message}")
    return 0 if all(result.status == "success" for result in results) else 1


async def check_api_key() -> int:
    settings = get_settings()
    services = build_services(settings)
    valid = await services.summarizer.verify_api_key(settings.openai_api_key or "")
    print("API key is valid." if valid else "API key is missing or was rejected.")
    return 0 if valid else 1


def serve(args: argparse.Namespace) -> None:
    import uvicorn

    from digest_agent.api import create_app

    settings = get_settings()
    configure_langsmith_env(settings)
    app = create_app(build_services(settings), run_scheduler=not args.no_scheduler)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    setup_logging(verbose=bool(getattr(args, "verbose", False)))

    if args.command == "run":
        raise SystemExit(run_pipeline(args))
    if args.command == "serve":
        serve(args)
        return
    if args.command == "test-feeds":
        raise SystemExit(asyncio.run(check_feeds()))
    if args.command == "check-api-key":
        raise SystemExit(asyncio.run(check_api_key()))
    if args.command == "next-run":
        settings = get_settings()
        next_run = compute_next_run(settings.schedule_time, settings.schedule_timezone, datetime.now().astimezone())
        print(next_run.isoformat())


if __name__ == "__main__":
    main()
