# src/zulip_companion/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- establishes the bot identity (fatal if it cannot),
- wires concrete implementations (gateway, engine, stores, services),
- returns an App whose `run()` polls forever and `aclose()` releases everything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..config import Settings
from ..connectors.zulip_client import ZulipClient
from ..core.context import ServiceContext
from ..core.dispatch import MessageRouter
from ..core.event_loop import EventLoop
from ..core.ports import AnswerEngine
from ..dashboards.dashboard_store import DashboardStore
from ..dashboards.help import HelpDashboard
from ..dashboards.registry import ClockDashboard, DashboardRegistry
from ..dashboards.rss import RssDashboard
from ..dashboards.scheduler import DashboardScheduler
from ..llm.client import OpenAIAnswerEngine
from ..llm.offline import OfflineAnswerEngine
from ..llm.tools import ZulipToolbox
from ..services.base import BaseService
from ..services.dashboards import DashboardsService
from ..services.loader import load_services
from ..services.tasks import TasksService
from ..tasks.channel_policy import TasksChannelPolicy
from ..tasks.task_manager import TaskManager
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """The bot cannot start (e.g. its own profile cannot be fetched)."""


@dataclass(slots=True)
class App:
    ctx: ServiceContext
    client: ZulipClient
    engine: AnswerEngine
    scheduler: DashboardScheduler
    services: list[BaseService]
    event_loop: EventLoop

    async def run(self) -> None:
        await self.event_loop.run()

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        close_engine = getattr(self.engine, "aclose", None)
        if close_engine is not None:
            try:
                await close_engine()
            except Exception:
                logger.debug("Engine close failed.", exc_info=True)
        await self.client.aclose()


def build_registry(
        services: list[BaseService],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
) -> DashboardRegistry:
    registry = DashboardRegistry()
    registry.register("clock", ClockDashboard())
    registry.register("help", HelpDashboard(registry, services))
    registry.register("rss", RssDashboard(transport=transport))
    return registry


def create_engine(settings: Settings, client: ZulipClient) -> AnswerEngine:
    if not settings.llm_api_key:
        logger.warning("No LLM API key configured; mentions get an offline answer.")
        return OfflineAnswerEngine()
    return OpenAIAnswerEngine(settings, toolbox=ZulipToolbox(client))


async def build_app(
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
) -> App:
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    client = ZulipClient(
        realm=settings.zulip_realm,
        email=settings.zulip_email,
        api_key=settings.zulip_api_key,
        timeout_seconds=settings.zulip_timeout_seconds,
        transport=transport,
    )

    try:
        profile = await client.get_profile()
    except Exception as e:
        await client.aclose()
        raise StartupError(f"Could not fetch the bot profile from {settings.zulip_realm}: {e}") from e

    logger.info("  Realm: %s", settings.zulip_realm)
    logger.info("  Bot:   %s (%s)", profile.full_name, profile.email)
    logger.info("  DB:    %s", settings.db_path)

    ctx = ServiceContext(
        client=client,
        settings=settings,
        bot_email=profile.email or settings.zulip_email,
        bot_user_id=profile.user_id,
        bot_name=profile.full_name,
    )

    active: list[BaseService] = []
    registry = build_registry(active)
    scheduler = DashboardScheduler(ctx, DashboardStore(settings.db_path), registry)

    policy = TasksChannelPolicy(
        client,
        prefix=settings.tasks_channel,
        folder_colocation=settings.tasks_folder_colocation,
    )
    manager = TaskManager(ctx, TaskStore(settings.db_path), policy)

    candidates: list[BaseService] = [
        DashboardsService(ctx, scheduler),
        TasksService(ctx, manager),
    ]
    logger.info("Loading services...")
    services = await load_services(ctx, candidates, active=active)

    engine = create_engine(settings, client)
    router = MessageRouter(ctx, services, engine)
    event_loop = EventLoop(ctx, router, services)

    return App(
        ctx=ctx,
        client=client,
        engine=engine,
        scheduler=scheduler,
        services=services,
        event_loop=event_loop,
    )
