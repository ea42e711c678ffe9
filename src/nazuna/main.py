"""
Nazuna Bot
==========

Entry point of the messaging bot core: connects one session (two in dual
mode), keeps them connected and applies the group moderation policy to
membership changes while forwarding live messages to the command router.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.
    Resolution order:
    1. NAZUNA_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("NAZUNA_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import argparse
import asyncio
from typing import Optional, Sequence

from dotenv import load_dotenv

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.cache.message_cache import MessageDedupCache
from nazuna.cache.retry_counter_cache import RetryCounterCache
from nazuna.configuration.app_configuration import AppConfig, load_app_config
from nazuna.configuration.group_config import GroupConfigStore
from nazuna.errors import BootstrapInputError, ConnectorError, StartupError
from nazuna.listener.group_listener import GroupListener
from nazuna.listener.message_intake import MessageIntake, load_command_router
from nazuna.moderation.banner import PillowBannerRenderer
from nazuna.moderation.group_policy_engine import GroupPolicyEngine, PolicySettings
from nazuna.session.session_manager import SessionManager
from nazuna.session.transport import Connector, load_connector
from nazuna.util.logger import get_logger, handle_exception

logger = get_logger("main")


def load_environment() -> None:
    """Load ``.env`` from the base directory; variables already set win."""
    load_dotenv(dotenv_path=BASE_DIR / ".env")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="nazuna", description="Run the Nazuna bot core.")
    parser.add_argument(
        "--code",
        action="store_true",
        help="pair a new session with a pairing code instead of a QR token",
    )
    parser.add_argument(
        "--dual",
        action="store_true",
        help="run a secondary session and alternate message handling between both",
    )
    return parser.parse_args(argv)


def build_session_manager(
    app_config: AppConfig,
    connector: Connector,
    *,
    code_mode: bool = False,
    dual_mode: bool = False,
) -> SessionManager:
    """Wire caches, policy engine and listeners around a new session manager."""
    metadata_cache = GroupMetadataCache(ttl_seconds=app_config.group_metadata_ttl)
    dedup_cache = MessageDedupCache(clear_interval=app_config.message_clear_interval)
    retry_counter_cache = RetryCounterCache(ttl_seconds=app_config.retry_counter_ttl)

    manager = SessionManager(
        app_config,
        connector,
        dedup_cache,
        retry_counter_cache,
        code_mode=code_mode,
        dual_mode=dual_mode,
    )

    engine = GroupPolicyEngine(
        GroupConfigStore(app_config.groups_dir),
        metadata_cache,
        PillowBannerRenderer(),
        PolicySettings.from_app_config(app_config),
    )
    group_listener = GroupListener(engine, metadata_cache, fetch_timeout=app_config.action_timeout)
    message_intake = MessageIntake(
        manager,
        metadata_cache,
        dedup_cache,
        load_command_router(app_config.command_router_path),
    )
    manager.attach_listeners(group_listener, message_intake)
    return manager


async def shutdown_runtime(manager: SessionManager) -> None:
    """Close sessions and stop background cache maintenance."""
    try:
        await manager.shutdown()
    except Exception as exc:
        logger.exception("Error during session shutdown: %s", exc)

    try:
        await manager.dedup_cache.shutdown()
    except Exception as exc:
        logger.exception("Error during message cache shutdown: %s", exc)

    logger.info("Shutdown complete.")


async def async_main(args: argparse.Namespace) -> int:
    """Bootstrap the sessions and run until stopped, returning an exit code."""
    load_environment()
    app_config = load_app_config()

    try:
        connector = load_connector(app_config.connector_path)
    except ConnectorError as exc:
        logger.critical("%s", exc)
        return 1

    manager = build_session_manager(app_config, connector, code_mode=args.code, dual_mode=args.dual)
    manager.dedup_cache.start()

    exit_code = 0
    try:
        await manager.start()
        await manager.run_until_stopped()
    except BootstrapInputError as exc:
        logger.critical("❌ %s", exc)
        exit_code = 1
    except StartupError as exc:
        logger.critical("❌ Startup failed: %s", exc)
        exit_code = 1
    except asyncio.CancelledError:
        logger.info("Runtime cancelled; proceeding to shutdown")
    except Exception as exc:
        logger.critical("Bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(manager)

    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    args = parse_args(argv)
    logger.info("Starting Nazuna…")
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
