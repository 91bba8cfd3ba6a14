"""
main.py — OpsDesk Entry Point

Usage:
    python main.py                          # CLI REPL, default settings
    python main.py --log-level DEBUG        # Verbose logging
    python main.py --config path/to/config.yaml
    python main.py --seed data/seed.yaml    # Preload projects/team/tasks/SOPs
"""

from __future__ import annotations

# Load .env before anything reads the environment
from dotenv import load_dotenv
from pathlib import Path

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="opsdesk",
        description="OpsDesk: conversational operations assistant",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $OPSDESK_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--seed",
        default=None,
        help="YAML file with projects/contractors/tasks/sops to preload into the in-memory store",
    )
    parser.add_argument(
        "--skip-health-check",
        action="store_true",
        default=False,
        help="Don't ping the LLM provider on startup",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    cfg = settings.logging
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=cfg.json_format,
        console_output=cfg.console_output,
        max_bytes=cfg.max_file_size_mb * 1024 * 1024,
        backup_count=cfg.backup_count,
        max_field_chars=cfg.max_field_chars,
    )
    return settings, get_logger("opsdesk.main")


async def build_chat_log(settings):
    from store.chat_log import InMemoryChatLog, SQLiteChatLog

    if settings.store.backend == "sqlite":
        chat_log = SQLiteChatLog(settings.store.sqlite_path)
    else:
        chat_log = InMemoryChatLog()
    await chat_log.init()
    return chat_log


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "opsdesk.starting",
        version=settings.agent.version,
        llm_provider=settings.default_llm_provider,
        llm_model=settings.default_llm_model,
        store_backend=settings.store.backend,
    )

    from agent.orchestrator import Orchestrator
    from brain import LLMClientFactory, LLMError
    from store.domain_store import InMemoryDomainStore, load_seed

    try:
        llm_client = LLMClientFactory.from_settings(settings)
    except (LLMError, ValueError) as e:
        log.error("opsdesk.llm_init_failed", error=str(e), error_type=type(e).__name__)
        print(f"\n❌  Failed to initialize LLM provider '{settings.default_llm_provider}': {e}\n",
              file=sys.stderr)
        return 1

    if not args.skip_health_check and not await llm_client.health_check():
        log.error("opsdesk.llm_health_check_failed", provider=settings.default_llm_provider)
        print(
            f"\n❌  LLM health check failed for '{settings.default_llm_provider}'.\n"
            f"    Please double check your API key and network connection.\n",
            file=sys.stderr,
        )
        return 1

    seed = None
    if args.seed:
        import yaml

        try:
            seed = load_seed(args.seed)
        except (OSError, ValueError, AttributeError, yaml.YAMLError) as e:
            print(f"\n❌  Couldn't read seed file {args.seed}: {e}\n", file=sys.stderr)
            return 1
    store = InMemoryDomainStore(seed)
    chat_log = await build_chat_log(settings)

    orchestrator = Orchestrator.from_settings(settings, llm_client, store, chat_log)

    from interfaces.cli import run_cli
    try:
        await run_cli(settings, orchestrator)
    finally:
        await chat_log.close()
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
