"""
Service container. Builds every client and service once and closes them
in reverse on shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

import httpx
from telegram import Bot

from bot.handlers import DiscordHandler, GraphApiClient, InteractionGate, MetaHandler, PendingTicket, TelegramHandler
from bot.services.export import CsvExporter
from bot.services.notifications import DiscordNotifier
from bot.services.rate_limiter import RateLimiter
from bot.services.tasks import TaskRunner
from config.config import Settings, require, settings
from core.analytics import Analytics
from core.backup import BackupEngine
from core.codec import parse_key
from core.events import EventBus
from core.monitoring import PerformanceTracker
from core.tickets import TicketService
from core.types import Platform, utc_now
from storage.bootstrap import close_storage, init_storage
from storage.interfaces import ObjectStore, RecordStore
from storage.objects import GCSObjectStore
from utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass
class AppContext:
    config: Settings
    records: RecordStore
    backups: RecordStore
    objects: ObjectStore
    events: EventBus
    notifier: DiscordNotifier
    rate_limiter: RateLimiter
    tracker: PerformanceTracker
    backup: BackupEngine
    analytics: Analytics
    tickets: TicketService
    tasks: TaskRunner
    exporter: CsvExporter
    telegram: TelegramHandler
    discord: DiscordHandler
    meta: MetaHandler
    http: httpx.AsyncClient
    telegram_bot: Optional[Bot] = None
    owns_storage: bool = False

    @classmethod
    async def create(cls, config: Settings = settings) -> "AppContext":
        """Production wiring: PostgreSQL, GCS, Discord webhooks, Telegram and Graph API clients."""
        require(config, "GOOGLE_CLOUD_BUCKET_NAME", "BACKUP_ENCRYPTION_KEY", "DATABASE_URL")
        key = parse_key(config.BACKUP_ENCRYPTION_KEY)

        storage = init_storage(database_url=config.DATABASE_URL)
        objects = GCSObjectStore(config.GOOGLE_CLOUD_BUCKET_NAME)
        telegram_bot = Bot(config.TELEGRAM_BOT_TOKEN) if config.TELEGRAM_BOT_TOKEN else None

        context = cls.from_stores(
            config=config,
            records=storage.interactions,
            backups=storage.backups,
            objects=objects,
            key=key,
            telegram_bot=telegram_bot,
        )
        context.owns_storage = True
        LOGGER.info("Application context ready")
        return context

    @classmethod
    def from_stores(
        cls,
        *,
        config: Settings,
        records: RecordStore,
        backups: RecordStore,
        objects: ObjectStore,
        key: bytes,
        telegram_bot: Optional[Bot] = None,
        http: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "AppContext":
        http = http or httpx.AsyncClient(timeout=10.0)
        events = EventBus()
        notifier = DiscordNotifier(
            config.DISCORD_NOTIFICATION_WEBHOOK_URL,
            config.DISCORD_REPORTS_WEBHOOK_URL,
            client=http,
        )
        events.subscribe(notifier.handle_event)

        rate_limiter = rate_limiter or RateLimiter()
        tracker = PerformanceTracker()
        backup = BackupEngine(
            records=records,
            backups=backups,
            objects=objects,
            key=key,
            events=events,
            page_size=config.BACKUP_SCAN_PAGE_SIZE,
            max_snapshot_bytes=config.BACKUP_MAX_SNAPSHOT_BYTES,
            retention_days=config.BACKUP_RETENTION_DAYS,
            clock=clock,
        )
        analytics = Analytics(records, events=events, clock=clock)
        tickets = TicketService(records, clock=clock)
        tasks = TaskRunner(
            backup=backup,
            analytics=analytics,
            tracker=tracker,
            events=events,
            max_response_ms=config.MAX_RESPONSE_TIME_MS,
            error_threshold=config.ERROR_THRESHOLD,
        )

        gate = InteractionGate(rate_limiter, records, deny_list=config.MODERATION_DENY_LIST)
        pending: Dict[str, PendingTicket] = {}
        graph = GraphApiClient(
            http,
            tokens={
                Platform.WHATSAPP: config.WHATSAPP_TOKEN,
                Platform.FACEBOOK: config.FACEBOOK_TOKEN,
                Platform.INSTAGRAM: config.INSTAGRAM_TOKEN,
            },
            base_url=config.META_API_BASE_URL,
            api_version=config.META_API_VERSION,
        )

        return cls(
            config=config,
            records=records,
            backups=backups,
            objects=objects,
            events=events,
            notifier=notifier,
            rate_limiter=rate_limiter,
            tracker=tracker,
            backup=backup,
            analytics=analytics,
            tickets=tickets,
            tasks=tasks,
            exporter=CsvExporter(records, objects),
            telegram=TelegramHandler(
                bot=telegram_bot,
                gate=gate,
                tickets=tickets,
                analytics=analytics,
                pending=pending,
            ),
            discord=DiscordHandler(gate=gate, tickets=tickets, analytics=analytics),
            meta=MetaHandler(gate=gate, graph=graph, verify_token=config.META_VERIFY_TOKEN),
            http=http,
            telegram_bot=telegram_bot,
        )

    async def aclose(self) -> None:
        if self.telegram_bot is not None:
            try:
                await self.telegram_bot.shutdown()
            except Exception as e:
                LOGGER.warning(f"Telegram bot shutdown failed: {e}")
        await self.http.aclose()

        close = getattr(self.objects, "close", None)
        if callable(close):
            close()
        if self.owns_storage:
            close_storage()
        LOGGER.info("Application context closed")


__all__ = ["AppContext"]
