"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Long-running engine around the sweep.

- Builds every component from EngineSettings
- Controls startup, shutdown, and the sweep schedule
- Handles signals (SIGINT, SIGTERM)
- Hosts the operator API when enabled

============================================================
ARCHITECTURAL POSITION
============================================================
- The engine has NO trigger or payout logic
- It ONLY wires components and schedules work

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import web

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import ConfigurationError
from core.settings import EngineSettings
from data_sources.gateway import EnvironmentalDataGateway
from notifications import LoggingNotifier, NotificationDispatcher, WebhookNotifier
from operator_api.app import create_app
from orchestrator.models import EngineStatus, SweepResult
from orchestrator.sweep import SweepEngine
from payout_engine.adapters import (
    HttpMobileMoneyGateway,
    MockPaymentConfig,
    MockPaymentGateway,
    PaymentGatewayRegistry,
)
from payout_engine.alerting import OperatorAlerter, TelegramAlerter
from payout_engine.manager import PayoutManager
from payout_engine.repository import InMemoryPayoutRepository, PayoutRepository
from payout_engine.sql_repository import SqlPayoutRepository
from policy_registry.base import PolicyRegistryPort
from policy_registry.memory import InMemoryPolicyRegistry
from scoring_engine.risk_score import HazardRiskScorer
from trigger_engine.evaluator import TriggerEvaluator


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING SETUP
# ============================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, correlation_id: Optional[str] = None):
        super().__init__()
        self._correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self._correlation_id,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(correlation_id)
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# COMPONENTS
# ============================================================

@dataclass
class EngineComponents:
    """Everything one engine instance runs on."""

    gateway: EnvironmentalDataGateway
    registry: PolicyRegistryPort
    evaluator: TriggerEvaluator
    payouts: PayoutManager
    sweep: SweepEngine
    alerter: OperatorAlerter


# ============================================================
# ENGINE
# ============================================================

class Engine:
    """
    Long-running parametric cover engine.

    Usage:
        engine = await build_engine(settings)
        await engine.run_forever()
    """

    def __init__(
        self,
        settings: EngineSettings,
        components: EngineComponents,
        clock: Optional[ClockProtocol] = None,
    ):
        self._settings = settings
        self._config = settings.orchestrator
        self._components = components
        self._clock = clock or ClockFactory.get_clock()

        self._status = EngineStatus.INITIALIZING
        self._shutdown = asyncio.Event()
        self._tick_task: Optional[asyncio.Task] = None
        self._api_runner: Optional[web.AppRunner] = None
        self._started_at = None
        self._last_error: Optional[str] = None
        self._signals_installed = False

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def components(self) -> EngineComponents:
        return self._components

    @property
    def is_running(self) -> bool:
        return self._status.is_active

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self, install_signals: bool = True) -> None:
        """Recover open payouts and start the operator API."""
        if self.is_running:
            logger.warning("Engine already running")
            return

        logger.info("=== ENGINE STARTUP SEQUENCE ===")

        recovered = await self._components.payouts.recover()
        logger.info(f"Recovered {recovered} in-flight payouts into the escalation schedule")

        if install_signals:
            self._install_signal_handlers()

        if self._config.operator_api_enabled:
            await self._start_operator_api()

        self._status = EngineStatus.RUNNING
        self._started_at = self._clock.now()
        logger.info(
            f"=== ENGINE STARTUP COMPLETE === sources={self._components.gateway.list_sources()} "
            f"interval={self._config.sweep_interval_seconds}s concurrency={self._config.max_concurrency}"
        )

    async def stop(self) -> None:
        """Stop the engine gracefully and release every resource."""
        if self._status in (EngineStatus.STOPPING, EngineStatus.STOPPED):
            return

        logger.info("=== ENGINE SHUTDOWN SEQUENCE ===")
        self._status = EngineStatus.STOPPING
        self._shutdown.set()

        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            try:
                await asyncio.wait_for(self._tick_task, timeout=self._config.shutdown_timeout_seconds)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        if self._api_runner is not None:
            await self._api_runner.cleanup()
            self._api_runner = None

        await self._components.gateway.close()
        await self._components.payouts.close_resources()

        self._restore_signal_handlers()
        self._status = EngineStatus.STOPPED
        logger.info("=== ENGINE SHUTDOWN COMPLETE ===")

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def run_forever(self) -> None:
        """Sweep on schedule and run escalation ticks until shutdown."""
        if not self.is_running:
            await self.start()

        self._tick_task = asyncio.create_task(self._escalation_loop())
        logger.info(f"Starting main loop | interval={self._config.sweep_interval_seconds}s")

        try:
            while not self._shutdown.is_set():
                try:
                    await self._components.sweep.run_sweep()
                except Exception as e:
                    self._last_error = str(e)
                    logger.error(f"Sweep error: {e}", exc_info=True)

                if not self._shutdown.is_set():
                    await self._wait_for_next_tick()
        finally:
            await self.stop()

    async def run_single_sweep(self) -> SweepResult:
        """Run one sweep (including polling and SLA checks)."""
        if not self.is_running:
            await self.start(install_signals=False)
        return await self._components.sweep.run_sweep()

    async def _escalation_loop(self) -> None:
        interval = self._config.escalation_tick_seconds
        while not self._shutdown.is_set():
            if await self._sleep_or_shutdown(interval):
                return
            try:
                await self._components.sweep.run_escalation_tick()
            except Exception as e:
                self._last_error = str(e)
                logger.error(f"Escalation tick error: {e}", exc_info=True)

    async def _wait_for_next_tick(self) -> None:
        """Wait until the next sweep; hourly sweeps align to the hour."""
        now = self._clock.now()
        interval = self._config.sweep_interval_seconds

        if interval == 3600:
            next_tick = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        else:
            next_tick = now + timedelta(seconds=interval)

        wait_seconds = (next_tick - now).total_seconds()
        if wait_seconds > 0:
            logger.debug(f"Waiting {wait_seconds:.1f}s until next sweep")
            await self._sleep_or_shutdown(wait_seconds)

    async def _sleep_or_shutdown(self, seconds: float) -> bool:
        """Sleep; returns True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    # --------------------------------------------------------
    # Operator API
    # --------------------------------------------------------

    async def _start_operator_api(self) -> None:
        app = create_app(self._components.payouts, status_provider=self.health_check)
        self._api_runner = web.AppRunner(app)
        await self._api_runner.setup()
        site = web.TCPSite(self._api_runner, self._config.operator_api_host, self._config.operator_api_port)
        await site.start()
        logger.info(
            f"Operator API listening on http://{self._config.operator_api_host}:{self._config.operator_api_port}"
        )

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, lambda signum, frame: self.request_shutdown())
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        self._signals_installed = False
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    # --------------------------------------------------------
    # Health & Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get engine status."""
        last = self._components.sweep.last_result
        return {
            "status": self._status.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "current_time": self._clock.now().isoformat(),
            "sweep_count": self._components.sweep.sweep_count,
            "last_sweep": last.to_dict() if last else None,
            "last_error": self._last_error,
            "scheduled_checks": len(self._components.payouts.scheduler),
        }

    async def health_check(self) -> Dict[str, Any]:
        """Engine and provider health."""
        sources = {
            name: health.to_dict()
            for name, health in self._components.gateway.get_all_health().items()
        }
        last = self._components.sweep.last_result
        return {
            "healthy": self.is_running and (last is None or last.success),
            "status": self._status.value,
            "sweep_count": self._components.sweep.sweep_count,
            "last_sweep_failed_units": last.failed if last else 0,
            "sources": sources,
        }


# ============================================================
# ENGINE FACTORY
# ============================================================

async def build_engine(
    settings: EngineSettings,
    clock: Optional[ClockProtocol] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> Engine:
    """
    Factory function to build a fully wired engine.

    Args:
        settings: Validated engine settings
        clock: Clock shared by every component
        session: Optional shared HTTP session

    Returns:
        Engine ready to start

    Raises:
        ConfigurationError: If settings are invalid or the policy book is missing
    """
    settings.validate()
    clock = clock or ClockFactory.get_clock()
    orch = settings.orchestrator

    if not orch.policies_path:
        raise ConfigurationError("policies_path is required", config_key="orchestrator.policies_path")
    policies_path = Path(orch.policies_path)
    if not policies_path.exists():
        raise ConfigurationError(
            f"Policy file not found: {policies_path}",
            config_key="orchestrator.policies_path",
            actual_value=str(policies_path),
        )
    registry = InMemoryPolicyRegistry.from_yaml(policies_path, clock=clock)

    gateway = EnvironmentalDataGateway.from_config(settings.gateway, clock=clock, session=session)
    evaluator = TriggerEvaluator(settings.triggers, HazardRiskScorer(settings.scoring), clock=clock)

    repository: PayoutRepository
    if orch.database_url:
        repository = await SqlPayoutRepository.from_url(orch.database_url)
    else:
        logger.warning("DATABASE_URL not set, payouts are kept in memory only")
        repository = InMemoryPayoutRepository()

    gateways = PaymentGatewayRegistry()
    for provider in settings.payment_providers:
        if provider.kind == "mobile_money":
            adapter = HttpMobileMoneyGateway(
                base_url=provider.base_url,
                api_key=provider.api_key,
                provider_id=provider.provider_id,
                currency=settings.payouts.currency,
                timeout_seconds=provider.timeout_seconds,
                clock=clock,
            )
        else:
            adapter = MockPaymentGateway(MockPaymentConfig(provider_id=provider.provider_id))
        gateways.register(adapter, default=provider.default)

    alerter = TelegramAlerter(settings.alerting, clock=clock)

    if settings.notifier.kind == "webhook":
        port = WebhookNotifier(
            settings.notifier.url,
            api_key=settings.notifier.api_key,
            timeout_seconds=settings.notifier.timeout_seconds,
        )
    else:
        port = LoggingNotifier()

    payouts = PayoutManager(
        repository=repository,
        gateways=gateways,
        config=settings.payouts,
        clock=clock,
        alerter=alerter,
        notifier=NotificationDispatcher(port),
    )

    sweep = SweepEngine(
        gateway=gateway,
        registry=registry,
        evaluator=evaluator,
        payouts=payouts,
        alerter=alerter,
        max_concurrency=orch.max_concurrency,
        clock=clock,
    )

    components = EngineComponents(
        gateway=gateway,
        registry=registry,
        evaluator=evaluator,
        payouts=payouts,
        sweep=sweep,
        alerter=alerter,
    )
    return Engine(settings, components, clock=clock)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Engine",
    "EngineComponents",
    "JsonFormatter",
    "build_engine",
    "setup_logging",
]
