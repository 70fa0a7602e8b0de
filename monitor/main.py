"""
monitor/main.py

FastAPI host process for the monitoring engine.
Starts the engine at boot when enabled and stops it at shutdown.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from config import Settings, settings
from monitor.engine import HealthMonitorEngine
from monitor.routers.status import router as status_router
from monitor.services.analyzer import DEFAULT_ALERT_RULES, HealthTrendAnalyzer, load_alert_rules
from monitor.services.composer import NotificationComposer
from monitor.services.providers import build_providers
from monitor.services.push import FirebasePushGateway, PushGateway
from monitor.services.recorder import NotificationRecorder
from monitor.services.scanner import DueItemScanner
from monitor.services.store import Store

logger = structlog.get_logger(__name__)


def build_engine(
    config: Settings,
    store: Optional[Store] = None,
    push_gateway: Optional[PushGateway] = None,
) -> HealthMonitorEngine:
    """Wire an engine from settings; store and push default to MySQL and Firebase."""
    if store is None:
        from db.store import SqlAlchemyStore

        store = SqlAlchemyStore(vitals_lookback_minutes=config.vitals_lookback_minutes)
    if push_gateway is None:
        push_gateway = FirebasePushGateway(
            credentials_path=config.firebase_credentials_path,
            project_id=config.firebase_project_id,
            timeout=config.push_timeout_seconds,
        )

    rules = (
        load_alert_rules(config.alert_rules_path)
        if config.alert_rules_path
        else DEFAULT_ALERT_RULES
    )

    return HealthMonitorEngine(
        store=store,
        analyzer=HealthTrendAnalyzer(rules),
        composer=NotificationComposer(
            build_providers(config),
            body_max_length=config.notification_body_max_length,
        ),
        recorder=NotificationRecorder(store, push_gateway),
        scanner=DueItemScanner(
            store,
            default_window=config.notification_advance_minutes,
            concurrency=config.worker_concurrency,
        ),
        interval_ms=config.notification_interval_ms,
        concurrency=config.worker_concurrency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: startup and shutdown."""
    app.state.engine = None
    if settings.notification_engine_enabled:
        engine = build_engine(settings)
        await engine.start()
        app.state.engine = engine
    else:
        logger.info("engine_disabled")

    yield

    if app.state.engine is not None:
        await app.state.engine.stop(wait=True)
    logger.info("monitor_shutting_down")


app = FastAPI(
    title="Health Monitor",
    description="Vital-sign alerts and medication/appointment reminders",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(status_router)
