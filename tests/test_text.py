from __future__ import annotations

from zulip_companion.core.text import (
    command_text,
    extract_quoted_message_id,
    html_to_text,
    narrow_url,
    parse_mentions,
    truncate,
)

from .fakes import mention_html


def test_html_to_text_drops_mentions_and_keeps_paragraphs():
    content = f"<p>{mention_html(99, 'Companion')} first line</p><p>second &amp; last</p>"
    assert html_to_text(content) == "first line\n\nsecond & last"


def test_html_to_text_renders_links_and_code():
    content = '<p>see <a href="https://example.com/x">docs</a> and <code>pip</code></p>'
    assert html_to_text(content) == "see docs (https://example.com/x) and `pip`"


def test_command_text_strips_leftover_at_tokens():
    content = f"<p>{mention_html(99, 'Companion')} my tasks @someone</p>"
    assert command_text(content) == "my tasks"


def test_parse_mentions_in_order_without_bot_and_duplicates():
    content = (
        f"<p>{mention_html(99, 'Companion')} assign {mention_html(2, 'Bob')} "
        f"{mention_html(3, 'Carol')} {mention_html(2, 'Bob')}</p>"
    )
    mentions = parse_mentions(content, exclude_user_id=99)
    assert [(m.user_id, m.user_name) for m in mentions] == [(2, "Bob"), (3, "Carol")]
    assert mentions[0].silent() == "@_**Bob|2**"


def test_extract_quoted_message_id():
    content = (
        '<p><span class="user-mention silent">Alice</span> '
        '<a href="https://chat.example.com/#narrow/channel/1-general/topic/lunch/near/4242">said</a>:</p>'
        "<blockquote><p>buy milk</p></blockquote>"
    )
    assert extract_quoted_message_id(content) == 4242
    assert extract_quoted_message_id("<p>no quote here</p>") is None


def test_truncate_single_line_with_ellipsis():
    assert truncate("short", 10) == "short"
    assert truncate("line one\nline two", 100) == "line one line two"
    assert truncate("abcdefghij", 5) == "abcd…"


def test_narrow_url_quotes_channel_and_topic():
    url = narrow_url("https://chat.example.com", "dev team", "a/b", 7)
    assert url == "https://chat.example.com/#narrow/channel/dev%20team/topic/a%2Fb/near/7"


def test_command_text_ignores_quoted_reply():
    content = (
        '<p><span class="user-mention silent" data-user-id="1">Alice</span> '
        '<a href="https://chat.example.com/#narrow/channel/5-tasks/topic/x/near/1002">said</a>:</p>\n'
        "<blockquote>\n<p>task card text</p>\n</blockquote>\n"
        f"<p>{mention_html(99, 'Companion')} unassign {mention_html(3, 'Carol')}</p>"
    )
    assert command_text(content) == "unassign"
    assert extract_quoted_message_id(content) == 1002
    assert [m.user_id for m in parse_mentions(content, exclude_user_id=99)] == [3]
