"""
Entry points for engine commands.

Each command sets up the environment and runs the appropriate logic.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

# Load .env file BEFORE importing settings
from dotenv import load_dotenv

for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent.parent / ".env",
]:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

from crash_risk.adapters.feeds import HyperliquidFeed  # noqa: E402
from crash_risk.adapters.messaging import InMemoryEventBus  # noqa: E402
from crash_risk.adapters.store import InMemoryHistoryStore, SQLiteHistoryStore  # noqa: E402
from crash_risk.config.settings import Settings, get_settings  # noqa: E402
from crash_risk.domain.errors import ConfigurationError, FeedError  # noqa: E402
from crash_risk.domain.models import RiskPerInstrument  # noqa: E402
from crash_risk.observability.logging import get_logger, setup_logging  # noqa: E402
from crash_risk.observability.metrics import start_metrics_server  # noqa: E402
from crash_risk.ports.store import HistoryStorePort  # noqa: E402
from crash_risk.services.engine import RiskEngine  # noqa: E402


def resolve_settings(
    env: str,
    instruments: Sequence[str] | None = None,
    store: str | None = None,
) -> Settings:
    """Load settings for env and apply CLI overrides."""
    settings = get_settings(env)
    update: dict = {}
    if instruments:
        update["instruments"] = list(instruments)
    if store:
        update["database"] = settings.database.model_copy(update={"backend": store})
    return settings.model_copy(update=update) if update else settings


def build_store(settings: Settings) -> HistoryStorePort:
    if settings.database.backend == "memory":
        return InMemoryHistoryStore()
    return SQLiteHistoryStore.from_settings(settings)


def build_engine(settings: Settings) -> RiskEngine:
    """
    Wire the engine with its production collaborators.

    Raises:
        ConfigurationError: The indicator configuration is invalid.
    """
    errors = settings.validate_indicators()
    if errors:
        raise ConfigurationError("Invalid configuration", errors=errors)
    return RiskEngine(
        settings,
        feed=HyperliquidFeed.from_settings(settings),
        store=build_store(settings),
        event_bus=InMemoryEventBus(),
    )


def _log_startup_banner(logger, *, env: str, settings: Settings) -> None:
    logger.info("========================================================")
    logger.info(
        f"env={env} | instruments={','.join(settings.instruments)} | "
        f"mode={settings.indicators.mode} | indicators={','.join(settings.indicators.enabled)}"
    )
    logger.info(
        f"tick={settings.scheduler.tick_interval_seconds:.0f}s "
        f"stale_after={settings.scheduler.stale_after_seconds:.0f}s "
        f"store={settings.database.backend}"
        + (f" ({settings.database.path})" if settings.database.backend == "sqlite" else "")
    )
    logger.info("========================================================")


def _log_config_errors(logger, error: ConfigurationError) -> None:
    for line in error.details.get("errors", []) or [error.message]:
        logger.error(f"[CONFIG] {line}")


def _render(published: Mapping[str, RiskPerInstrument]) -> str:
    return json.dumps({i: r.to_dict() for i, r in published.items()}, indent=2, sort_keys=True, default=str)


async def run_engine(
    env: str = "development",
    *,
    instruments: Sequence[str] | None = None,
    store: str | None = None,
) -> int:
    """
    Run the engine until SIGINT/SIGTERM.

    Returns:
        Exit code: 0 = success, 1 = fatal error, 2 = configuration error.
    """
    settings = resolve_settings(env, instruments, store)
    setup_logging(settings)
    logger = get_logger(__name__)
    _log_startup_banner(logger, env=env, settings=settings)

    try:
        engine = build_engine(settings)
    except ConfigurationError as e:
        _log_config_errors(logger, e)
        logger.error("Aborting startup due to configuration errors.")
        return 2

    if settings.metrics.enabled:
        start_metrics_server(settings.metrics.port, settings.metrics.addr)
        logger.info(f"Metrics exporter on {settings.metrics.addr}:{settings.metrics.port}")

    shutdown_event = asyncio.Event()
    received_signal: list[str] = []

    if sys.platform == "win32":
        def win_handler(signum: int, frame) -> None:
            received_signal.append(f"signal-{signum}")
            shutdown_event.set()

        signal.signal(signal.SIGINT, win_handler)
        signal.signal(signal.SIGTERM, win_handler)
    else:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: (received_signal.append(s.name), shutdown_event.set()))

    try:
        await engine.start()
        await shutdown_event.wait()
        if received_signal:
            logger.info(f"Received {received_signal[0]}, initiating shutdown...")
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown signal received, shutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        await engine.stop()

    logger.info("Engine stopped cleanly")
    return 0


async def run_once(
    env: str = "development",
    *,
    instruments: Sequence[str] | None = None,
    store: str | None = None,
) -> int:
    """Run a single tick and print the published map as JSON."""
    settings = resolve_settings(env, instruments, store)
    setup_logging(settings)
    logger = get_logger(__name__)

    try:
        engine = build_engine(settings)
    except ConfigurationError as e:
        _log_config_errors(logger, e)
        return 2

    try:
        await engine.open()
        published = await engine.run_tick()
    finally:
        await engine.close()

    if published is None:
        logger.error("Tick produced no result (feed unavailable for every instrument)")
        return 1
    print(_render(published))
    return 0


async def run_doctor(env: str = "development") -> int:
    """Validate configuration and check feed reachability."""
    settings = get_settings(env)
    setup_logging(settings)
    logger = get_logger(__name__)

    logger.info("Running preflight checks...")
    checks_passed = 0
    checks_failed = 0

    errors = settings.validate_indicators()
    if errors:
        for line in errors:
            logger.error(f"[FAIL] {line}")
        checks_failed += 1
    else:
        logger.info(
            f"[OK] Configuration valid (mode={settings.indicators.mode}, "
            f"indicators={','.join(settings.indicators.enabled)})"
        )
        checks_passed += 1

    feed = HyperliquidFeed.from_settings(settings)
    try:
        await feed.initialize()
        listed = await feed.ping()
        logger.info(f"[OK] Feed reachable ({listed} coins listed)")
        checks_passed += 1

        for instrument in settings.instruments:
            try:
                await feed.get_instrument_metrics(instrument)
                logger.info(f"[OK] {instrument} available")
                checks_passed += 1
            except FeedError as e:
                logger.error(f"[FAIL] {instrument}: {e}")
                checks_failed += 1
    except FeedError as e:
        logger.error(f"[FAIL] Feed unreachable: {e}")
        checks_failed += 1
    finally:
        await feed.close()

    logger.info(f"Preflight: {checks_passed} passed, {checks_failed} failed")
    return 0 if checks_failed == 0 else 1
