"""EventWeather entry point.

Loads configuration, initializes the database and all API clients, creates
the pipeline orchestrator, and either runs a single sweep (--once) or starts
the APScheduler sweep alongside the HTTP API.

Usage:
    python -m eventweather.main           # Start scheduler + API (runs forever)
    python -m eventweather.main --once    # Run one sweep and exit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Any

import httpx
import uvicorn

from eventweather import __version__
from eventweather.alerts.dispatcher import Channel, NotificationDispatcher
from eventweather.alerts.email import EmailChannel, SMTPMailer
from eventweather.alerts.twilio import SMSChannel, TwilioClient, WhatsAppChannel
from eventweather.api.app import build_services, create_app
from eventweather.automation.executor import AutomationExecutor
from eventweather.config import Settings, get_settings, get_yaml_config
from eventweather.core.pipeline import WeatherAlertPipeline
from eventweather.core.scheduler import create_scheduler, run_once
from eventweather.core.types import AlertChannel
from eventweather.db.engine import get_engine, get_session_factory, init_db
from eventweather.ingestion.weather import WeatherClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Arguments to parse. Uses sys.argv if None.

    Returns:
        Parsed namespace with the ``once`` flag.
    """
    parser = argparse.ArgumentParser(
        prog="eventweather",
        description="Weather monitoring and alerting for scheduled events",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single weather sweep and exit",
    )
    return parser.parse_args(argv)


def build_channels(
    settings: Settings, http_client: httpx.AsyncClient, timeout: float
) -> dict[AlertChannel, Channel]:
    """Create a transport for every channel whose credentials are configured.

    Channels left out are reported as failed deliveries by the dispatcher.
    """
    channels: dict[AlertChannel, Channel] = {}

    if settings.has_smtp:
        mailer = SMTPMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.email_from or settings.smtp_user,
            username=settings.smtp_user,
            password=settings.smtp_password,
            timeout=timeout,
        )
        channels[AlertChannel.EMAIL] = EmailChannel(mailer)

    if settings.has_twilio:
        twilio = TwilioClient(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            client=http_client,
            timeout=timeout,
        )
        if settings.twilio_phone_number:
            channels[AlertChannel.SMS] = SMSChannel(twilio, settings.twilio_phone_number)
        if settings.twilio_whatsapp_from:
            channels[AlertChannel.WHATSAPP] = WhatsAppChannel(twilio, settings.twilio_whatsapp_from)

    logger.info(
        "Notification channels configured: %s",
        ", ".join(c.value for c in channels) or "none",
    )
    return channels


async def async_main(once: bool = False) -> None:
    """Async initialization and startup sequence.

    Args:
        once: If True, run a single sweep and exit.
    """
    settings = get_settings()
    yaml_config = get_yaml_config()

    logger.info("EventWeather v%s initialized", __version__)
    logger.info("Environment: %s", settings.environment)
    logger.info("Database: %s", settings.db_path)

    if not settings.openweather_api_key:
        logger.warning("OPENWEATHER_API_KEY is not set; weather fetches will fail")

    # Initialize database
    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(settings.db_path)
    await init_db(engine, yaml_config.system_defaults)
    session_factory = get_session_factory(engine)
    logger.info("Database initialized")

    # Create shared HTTP client
    http_client = httpx.AsyncClient(timeout=30.0)

    weather_client = WeatherClient(
        api_key=settings.openweather_api_key,
        client=http_client,
        cache_ttl_minutes=yaml_config.weather.cache_ttl_minutes,
        timeout=yaml_config.weather.request_timeout_s,
    )
    dispatcher = NotificationDispatcher(
        build_channels(settings, http_client, yaml_config.alerts.notification_timeout_s),
        timeout=yaml_config.alerts.notification_timeout_s,
    )
    executor = AutomationExecutor(session_factory)

    pipeline = WeatherAlertPipeline(
        weather_client=weather_client,
        dispatcher=dispatcher,
        session_factory=session_factory,
        yaml_config=yaml_config,
        executor=executor,
    )

    if once:
        record = await run_once(pipeline)
        logger.info(
            "Single sweep complete: status=%s duration=%dms",
            record.status.value,
            record.duration_ms or 0,
        )
    else:
        interval = yaml_config.scheduler.sweep_interval_minutes
        scheduler = create_scheduler(
            pipeline,
            weather_client,
            interval,
            yaml_config.scheduler.cache_sweep_minutes,
        )

        app = create_app(build_services(pipeline, executor, session_factory))
        server = uvicorn.Server(
            uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_level="info")
        )
        # Signals are handled below so the scheduler stops with the server
        server.install_signal_handlers = lambda: None  # type: ignore[method-assign]

        def _signal_handler(sig: int, frame: Any) -> None:
            logger.info("Received signal %s, initiating shutdown...", sig)
            server.should_exit = True

        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

        scheduler.start()
        logger.info("Scheduler started, sweeping every %d minutes", interval)

        logger.info("Running initial weather sweep...")
        await pipeline.run_sweep()

        await server.serve()

        logger.info("Shutting down scheduler...")
        scheduler.shutdown(wait=True)

    # Cleanup
    await http_client.aclose()
    await engine.dispose()
    logger.info("Shutdown complete")


def main() -> None:
    """Synchronous entry point."""
    args = parse_args()
    asyncio.run(async_main(once=args.once))


if __name__ == "__main__":
    main()
