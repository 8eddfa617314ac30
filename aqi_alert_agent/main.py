"""Main entry point for the air quality alert agent."""

import argparse
import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .alert_generator import AlertGenerator
from .background import BackgroundRefresher
from .config import AppConfig, load_config
from .content_cache import ContentCache
from .db import CacheStore, PreferenceStore, ScheduleStore, init_db
from .lifecycle import NotificationLifecycleManager
from .notification_platform import LocalNotificationPlatform, log_delivery
from .openai_client import create_llm_client
from .preferences import PreferenceService
from .scheduler import RefreshQueue
from .snapshot_provider import HTTPSnapshotProvider, fetch_snapshot_or_fallback
from .twilio_notifier import TwilioDelivery

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


@dataclass
class AlertAgent:
    """Wired components of a running agent."""
    config: AppConfig
    cache: ContentCache
    generator: AlertGenerator
    platform: LocalNotificationPlatform
    manager: NotificationLifecycleManager
    preferences: PreferenceService
    refresher: BackgroundRefresher


def track_deliveries(deliver, manager):
    """
    Wrap a delivery callable so the manager sees every fired notification.

    The platform has already dropped a fired one-off job, so its record is
    cleared even when the delivery itself raises.
    """
    def deliver_and_notify(payload):
        try:
            deliver(payload)
        finally:
            manager.handle_delivery(payload)

    return deliver_and_notify


def build_agent(config: AppConfig, snapshot_provider=None) -> AlertAgent:
    """Create every component from configuration."""
    logger.info(f"Initializing database at {config.db_path}...")
    conn = init_db(config.db_path)

    cache = ContentCache(CacheStore(conn), config.cache)
    generator = AlertGenerator(create_llm_client(config.llm), config.llm, config.notification)

    deliver = TwilioDelivery(config.twilio) if config.twilio else log_delivery
    platform = LocalNotificationPlatform(deliver=deliver)

    if snapshot_provider is None:
        snapshot_provider = HTTPSnapshotProvider(config.snapshot)

    queue = RefreshQueue()
    manager = NotificationLifecycleManager(
        platform=platform,
        snapshot_provider=snapshot_provider,
        cache=cache,
        generator=generator,
        schedule_store=ScheduleStore(conn),
        refresh_queue=queue,
        refresh_lead=timedelta(minutes=config.notification.refresh_lead_minutes),
    )
    preferences = PreferenceService(PreferenceStore(conn), manager)

    platform.deliver = track_deliveries(platform.deliver, manager)

    refresher = BackgroundRefresher(
        manager,
        cache,
        queue,
        sweep_max_age_days=config.cache.sweep_max_age_days,
        tick_hooks=[platform.run_pending],
    )
    return AlertAgent(
        config=config,
        cache=cache,
        generator=generator,
        platform=platform,
        manager=manager,
        preferences=preferences,
        refresher=refresher,
    )


def reconcile_all(agent: AlertAgent) -> int:
    """Reconcile every location with stored preferences. Returns scheduled count."""
    scheduled = 0
    for location_id in agent.preferences.store.location_ids():
        results = agent.manager.reconcile(location_id, agent.preferences.get(location_id))
        scheduled += sum(1 for handle in results.values() if handle)
    return scheduled


def serve(agent: AlertAgent, interval_seconds: float, stop_event: Optional[threading.Event] = None) -> None:
    """Schedule stored preferences, then run the platform and refresher loop."""
    # Handles from a previous process are gone with its in-memory platform
    scheduled = reconcile_all(agent)
    logger.info(f"{scheduled} alert notification(s) scheduled")
    agent.refresher.run_forever(interval_seconds, stop_event)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Personalized air quality alert agent")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Schedule alerts and run the delivery loop")
    serve_parser.add_argument(
        "--interval", type=float, default=60.0,
        help="Seconds between background ticks (default: 60)",
    )

    sweep_parser = subparsers.add_parser("sweep", help="Delete old cached alert messages")
    sweep_parser.add_argument(
        "--max-age-days", type=int, default=None,
        help="Override CACHE_SWEEP_MAX_AGE_DAYS",
    )

    reconcile_parser = subparsers.add_parser("reconcile", help="Re-apply stored preferences for a location")
    reconcile_parser.add_argument("location_id")

    preview_parser = subparsers.add_parser("preview", help="Print the alert message a variant would use")
    preview_parser.add_argument("location_id")
    preview_parser.add_argument("variant", help='"morning", "evening" or "custom:<id>"')
    preview_parser.add_argument("--name", default=None, help="Display name for the alert")

    args = parser.parse_args()

    try:
        logger.info("Loading configuration...")
        config = load_config()

        if args.command == "sweep":
            conn = init_db(config.db_path)
            cleared = ContentCache(CacheStore(conn), config.cache).sweep(args.max_age_days)
            print(f"Cleared {cleared} cached alert(s)")
            conn.close()
            return

        agent = build_agent(config)

        if args.command == "serve":
            serve(agent, args.interval)
        elif args.command == "reconcile":
            results = agent.manager.reconcile(args.location_id, agent.preferences.get(args.location_id))
            for variant, handle in results.items():
                print(f"{variant}: {handle or 'not scheduled'}")
        elif args.command == "preview":
            snapshot = fetch_snapshot_or_fallback(agent.manager.snapshot_provider, args.location_id)
            message = agent.cache.lookup(snapshot, args.location_id, args.variant)
            if message is None:
                message = agent.generator.generate(snapshot, args.variant, args.name)
            print(message)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
