from __future__ import annotations

import pytest

from zulip_companion.core.dispatch import APOLOGY_REPLY, EMPTY_QUESTION_REPLY, MessageRouter
from zulip_companion.core.models import Message, MessageEvent
from zulip_companion.core.streaming import PLACEHOLDER_TEXT

from .fakes import FakeAnswerEngine, make_message, mention_html


class RecordingService:
    def __init__(self, name: str, *, claims: bool = False, error: Exception | None = None) -> None:
        self.name = name
        self.claims = claims
        self.error = error
        self.seen: list[int] = []

    async def on_message(self, message: Message) -> bool:
        self.seen.append(message.id)
        if self.error is not None:
            raise self.error
        return self.claims


def mention_event(msg_id: int, text: str = "what is up?", **kwargs) -> MessageEvent:
    content = f"<p>{mention_html(99, 'Companion')} {text}</p>"
    return MessageEvent(id=msg_id, message=make_message(msg_id, content, **kwargs), flags=("mentioned",))


def test_eligibility(ctx):
    router = MessageRouter(ctx, [], FakeAnswerEngine())

    assert router.is_eligible(mention_event(1))
    assert not router.is_eligible(mention_event(2, msg_type="private"))
    assert not router.is_eligible(mention_event(3, sender_email="bot@example.com"))

    unmentioned = MessageEvent(id=4, message=make_message(4), flags=())
    assert not router.is_eligible(unmentioned)


@pytest.mark.asyncio
async def test_first_claiming_service_wins(ctx, gateway):
    first = RecordingService("first", claims=True)
    second = RecordingService("second", claims=True)
    engine = FakeAnswerEngine()
    router = MessageRouter(ctx, [first, second], engine)

    await router.handle_message(mention_event(10))

    assert first.seen == [10]
    assert second.seen == []
    assert engine.calls == []
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_failing_service_counts_as_unclaimed(ctx):
    broken = RecordingService("broken", error=RuntimeError("boom"))
    claimer = RecordingService("claimer", claims=True)
    router = MessageRouter(ctx, [broken, claimer], FakeAnswerEngine())

    assert await router.dispatch(mention_event(11).message) is True
    assert broken.seen == [11]
    assert claimer.seen == [11]


@pytest.mark.asyncio
async def test_unclaimed_mention_is_answered_with_topic_context(ctx, gateway):
    gateway.messages[1] = make_message(1, "<p>lunch at noon?</p>", sender_full_name="Bob")
    gateway.messages[2] = make_message(2, "<p>sure</p>", sender_full_name="Carol")
    event = mention_event(3, "where?")
    gateway.messages[3] = event.message

    engine = FakeAnswerEngine("At the usual place.")
    router = MessageRouter(ctx, [RecordingService("idle")], engine)

    await router.handle_message(event)

    assert engine.calls == [("where?", "Bob: lunch at noon?\nCarol: sure")]
    placeholder = gateway.sent[0]
    assert placeholder.content == PLACEHOLDER_TEXT
    assert (placeholder.channel, placeholder.topic) == ("general", "lunch")
    assert gateway.edits[-1] == (placeholder.id, "At the usual place.")


@pytest.mark.asyncio
async def test_empty_question_replaces_placeholder_with_prompt(ctx, gateway):
    engine = FakeAnswerEngine()
    router = MessageRouter(ctx, [], engine)

    await router.handle_message(mention_event(20, ""))

    placeholder_id = gateway.sent[0].id
    assert gateway.deleted == [placeholder_id]
    assert gateway.sent[-1].content == EMPTY_QUESTION_REPLY
    assert engine.calls == []


@pytest.mark.asyncio
async def test_engine_failure_deletes_placeholder_and_apologizes(ctx, gateway):
    router = MessageRouter(ctx, [], FakeAnswerEngine(error=RuntimeError("all models down")))

    await router.handle_message(mention_event(30))

    placeholder_id = gateway.sent[0].id
    assert gateway.deleted == [placeholder_id]
    assert gateway.sent[-1].content == APOLOGY_REPLY
