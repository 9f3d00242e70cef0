from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio

from zulip_companion.core.models import Channel, ReactionEvent, User
from zulip_companion.dashboards.help import HelpDashboard
from zulip_companion.dashboards.registry import ClockDashboard, DashboardRegistry, format_clock
from zulip_companion.dashboards.scheduler import DashboardScheduler
from zulip_companion.services.base import BaseService
from zulip_companion.services.dashboards import DashboardsService
from zulip_companion.services.loader import load_services, service_env_key
from zulip_companion.services.tasks import TasksService
from zulip_companion.tasks.channel_policy import TasksChannelPolicy
from zulip_companion.tasks.task_manager import NOTHING_TO_PROMOTE, TaskManager

from .fakes import make_message, mention_html

BOT = mention_html(99, "Companion")


async def never(_seconds: float) -> None:
    await asyncio.Event().wait()


def command(msg_id: int, text: str, **kwargs):
    return make_message(msg_id, f"<p>{BOT} {text}</p>", **kwargs)


@pytest.fixture()
def tasks_service(ctx, gateway, task_store) -> TasksService:
    gateway.channels = [Channel(stream_id=1, name="general")]
    gateway.users = {1: User(1, "alice@example.com", "Alice"), 2: User(2, "bob@example.com", "Bob")}
    manager = TaskManager(ctx, task_store, TasksChannelPolicy(gateway))
    return TasksService(ctx, manager)


@pytest_asyncio.fixture()
async def dashboards_service(ctx, dashboard_store):
    registry = DashboardRegistry()
    registry.register("clock", ClockDashboard())
    scheduler = DashboardScheduler(ctx, dashboard_store, registry, sleep=never)
    yield DashboardsService(ctx, scheduler)
    await scheduler.shutdown()


# ---- tasks service ----


@pytest.mark.asyncio
async def test_task_command_is_claimed_and_promotes(tasks_service, gateway, task_store):
    gateway.messages[100] = make_message(100, "<p>Buy milk</p>")
    cmd = command(101, "task")
    gateway.messages[101] = cmd

    assert await tasks_service.on_message(cmd) is True
    assert task_store.get_by_source(100) is not None


@pytest.mark.asyncio
async def test_task_errors_are_replied(tasks_service, gateway):
    cmd = command(101, "task")
    gateway.messages[101] = cmd

    assert await tasks_service.on_message(cmd) is True
    assert gateway.sent[-1].content == NOTHING_TO_PROMOTE


@pytest.mark.asyncio
async def test_unrelated_text_is_not_claimed(tasks_service, gateway):
    assert await tasks_service.on_message(command(1, "what is a taskforce?")) is False
    assert await tasks_service.on_message(command(2, "tasks")) is False
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_my_tasks_and_tasks_for_user(tasks_service, gateway):
    gateway.messages[100] = make_message(100, "<p>Buy milk</p>")
    cmd = command(101, f"task {mention_html(2, 'Bob')}")
    gateway.messages[101] = cmd
    await tasks_service.on_message(cmd)

    await tasks_service.on_message(command(102, "my tasks"))
    mine = gateway.sent[-1].content
    assert mine.startswith("**Tasks created by Alice** (1):")
    assert "Buy milk" in mine

    await tasks_service.on_message(command(103, f"tasks {mention_html(2, 'Bob')}"))
    assert gateway.sent[-1].content.startswith("**Tasks assigned to Bob** (1):")

    await tasks_service.on_message(command(104, "my tasks", sender_full_name="Carol", sender_id=3))
    assert gateway.sent[-1].content == "No tasks found for Carol."


@pytest.mark.asyncio
async def test_reactions_drive_task_lifecycle(tasks_service, gateway, task_store):
    gateway.messages[200] = make_message(200, "<p>Call the vendor</p>")

    await tasks_service.on_reaction(
        ReactionEvent(id=1, op="add", user_id=99, message_id=200, emoji_name="clipboard")
    )
    assert task_store.count_tasks() == 0

    await tasks_service.on_reaction(
        ReactionEvent(id=2, op="add", user_id=2, message_id=200, emoji_name="clipboard")
    )
    task = task_store.get_by_source(200)
    assert task is not None

    await tasks_service.on_reaction(
        ReactionEvent(id=3, op="add", user_id=2, message_id=task.task_msg_id, emoji_name="check")
    )
    assert task_store.get_task(task.id).is_done

    await tasks_service.on_reaction(
        ReactionEvent(id=4, op="remove", user_id=2, message_id=task.task_msg_id, emoji_name="check")
    )
    assert not task_store.get_task(task.id).is_done


# ---- dashboards service ----


@pytest.mark.asyncio
async def test_dashboard_commands(dashboards_service, gateway):
    svc = dashboards_service

    assert await svc.on_message(command(1, "dashboard start")) is True
    assert gateway.sent[-1].content == "Usage: `dashboard start <name> [params]`"

    assert await svc.on_message(command(2, "dashboard list")) is True
    assert gateway.sent[-1].content == "No active dashboards in this topic."

    await svc.on_message(command(3, "dashboard start clock"))
    placeholder = gateway.sent[-1]
    assert placeholder.content == "Starting dashboard `clock`…"
    assert gateway.edits[-1][0] == placeholder.id
    assert gateway.edits[-1][1].startswith("🕐 **")

    await svc.on_message(command(4, "dashboard list"))
    assert gateway.sent[-1].content == (
        "**Active dashboards:**\n- **clock** — Current date & time (every 5s)"
    )

    await svc.on_message(command(5, "dashboard start clock"))
    assert gateway.sent[-1].content == "Dashboard `clock` is already running here."

    await svc.on_message(command(6, "dashboard stop"))
    assert gateway.sent[-1].content == "Stopped dashboard(s): `clock`"
    assert placeholder.id in gateway.deleted

    await svc.on_message(command(7, "dashboard refresh clock"))
    assert gateway.sent[-1].content == "No active `clock` dashboard found in this topic."

    assert await svc.on_message(command(8, "show me a dashboard")) is False


@pytest.mark.asyncio
async def test_unknown_dashboard_is_reported(dashboards_service, gateway):
    await dashboards_service.on_message(command(1, "dashboard start weather berlin"))
    assert gateway.sent[-1].content == "Unknown dashboard `weather`. Available: clock"


@pytest.mark.asyncio
async def test_refresh_reaction_rerenders_and_clears_reaction(dashboards_service, gateway):
    await dashboards_service.on_message(command(1, "dashboard start clock"))
    msg_id = gateway.sent[-1].id
    edits = len(gateway.edits)

    await dashboards_service.on_reaction(
        ReactionEvent(id=1, op="add", user_id=1, message_id=msg_id, emoji_name="refresh")
    )

    assert len(gateway.edits) == edits + 1
    assert gateway.reactions_removed == [(msg_id, "refresh")]

    # The bot's own reactions and other emoji are ignored.
    await dashboards_service.on_reaction(
        ReactionEvent(id=2, op="add", user_id=99, message_id=msg_id, emoji_name="refresh")
    )
    await dashboards_service.on_reaction(
        ReactionEvent(id=3, op="add", user_id=1, message_id=msg_id, emoji_name="tada")
    )
    assert len(gateway.edits) == edits + 1


# ---- loader & help ----


class Probe(BaseService):
    description = "probe"

    def __init__(self, ctx, name: str, *, default_enabled: bool = True, fail_init: bool = False) -> None:
        super().__init__(ctx)
        self.name = name
        self.default_enabled = default_enabled
        self.fail_init = fail_init
        self.initialized = False

    async def init(self) -> None:
        self.initialized = True
        if self.fail_init:
            raise RuntimeError("init failed")

    async def on_message(self, message) -> bool:
        return False


def test_service_env_key():
    assert service_env_key("dashboards") == "SERVICE_DASHBOARDS"
    assert service_env_key("my-service") == "SERVICE_MY_SERVICE"


@pytest.mark.asyncio
async def test_load_services_applies_toggles_and_survives_init_failures(ctx):
    ctx = replace(ctx, settings=replace(ctx.settings, service_overrides={"tasks": False, "extras": True}))
    candidates = [
        Probe(ctx, "dashboards", fail_init=True),
        Probe(ctx, "tasks"),
        Probe(ctx, "extras", default_enabled=False),
        Probe(ctx, "hidden", default_enabled=False),
    ]
    active: list[BaseService] = []

    result = await load_services(ctx, candidates, active=active)

    assert result is active
    assert [s.name for s in active] == ["dashboards", "extras"]
    assert candidates[0].initialized
    assert not candidates[1].initialized


def test_help_lists_services_and_dashboards(ctx, tasks_service):
    registry = DashboardRegistry()
    registry.register("clock", ClockDashboard())
    services: list[BaseService] = [tasks_service]

    text = HelpDashboard(registry, services).build()

    assert text.startswith("## Bot Commands")
    assert "### Tasks" in text
    assert "| `task --own-topic` | Promote into a task with its own topic |" in text
    assert "| `clock` | Current date & time | 5s |" in text
    assert "### AI Assistant" in text


def test_format_clock():
    from datetime import UTC, datetime

    assert format_clock(datetime(2026, 10, 17, 15, 4, 5, tzinfo=UTC)) == (
        "🕐 **Saturday, October 17, 2026** — 03:04:05 PM UTC"
    )
