# src/zulip_companion/core/text.py

"""Text helpers for Zulip's rendered HTML message content."""

from __future__ import annotations

import html
import re
from urllib.parse import quote as _url_quote

from .models import Mention

_MENTION_SPAN_RE = re.compile(
    r'<span[^>]*class="(?:user-mention|user-group-mention)[^"]*"[^>]*>@[^<]*</span>',
    re.IGNORECASE,
)
_MENTION_RE = re.compile(r'data-user-id="(\d+)"[^>]*>@([^<]+)<')
_QUOTED_ID_RE = re.compile(r'href="[^"]*/near/(\d+)"')
_PLAIN_MENTION_RE = re.compile(r"@\S+")
_QUOTE_HEADER_RE = re.compile(
    r"<p>(?:(?!</p>)[\s\S])*?/near/\d+\"[^>]*>said</a>:?\s*</p>",
    re.IGNORECASE,
)
_BLOCKQUOTE_RE = re.compile(r"<blockquote>[\s\S]*?</blockquote>", re.IGNORECASE)


def html_to_text(content: str) -> str:
    """
    Convert Zulip HTML message content to plain text.

    Mention spans are removed entirely, block elements become newlines,
    links become "text (url)", remaining tags are stripped and entities decoded.
    """
    text = _MENTION_SPAN_RE.sub("", content or "")

    text = re.sub(r"</p>\s*<p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<li>", "- ", text, flags=re.IGNORECASE)
    text = re.sub(r"</?(p|div|blockquote|h[1-6]|ul|ol|pre)[^>]*>", "\n", text, flags=re.IGNORECASE)

    text = re.sub(r'<code[^>]*class="[^"]*"[^>]*>([\s\S]*?)</code>', r"\1", text, flags=re.IGNORECASE)
    text = re.sub(r"</?code[^>]*>", "`", text, flags=re.IGNORECASE)

    text = re.sub(r'<a[^>]*href="([^"]*)"[^>]*>([^<]*)</a>', r"\2 (\1)", text, flags=re.IGNORECASE)

    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")

    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def strip_quotes(content: str) -> str:
    """Drop quote-reply blocks ("X said:" header and the blockquote) from rendered HTML."""
    text = _QUOTE_HEADER_RE.sub("", content or "")
    return _BLOCKQUOTE_RE.sub("", text)


def command_text(content: str) -> str:
    """
    Plain text of a mention for command matching: quoted blocks and
    leftover @tokens are removed.
    """
    return _PLAIN_MENTION_RE.sub("", html_to_text(strip_quotes(content))).strip()


def parse_mentions(content: str, *, exclude_user_id: int | None = None) -> list[Mention]:
    """User mentions in rendered HTML, in order, without duplicates."""
    out: list[Mention] = []
    seen: set[int] = set()
    for m in _MENTION_RE.finditer(content or ""):
        user_id = int(m.group(1))
        if user_id == exclude_user_id or user_id in seen:
            continue
        seen.add(user_id)
        out.append(Mention(user_id=user_id, user_name=html.unescape(m.group(2)).strip()))
    return out


def extract_quoted_message_id(content: str) -> int | None:
    """
    Message id of a quote-reply target.

    Zulip quote HTML contains: <a href=".../#narrow/.../near/MESSAGE_ID">said</a>
    """
    m = _QUOTED_ID_RE.search(content or "")
    return int(m.group(1)) if m else None


def truncate(text: str, max_len: int) -> str:
    """Single-line preview, cut with an ellipsis."""
    one_line = (text or "").replace("\n", " ").strip()
    if len(one_line) <= max_len:
        return one_line
    return one_line[: max_len - 1] + "…"


def quote_block(text: str) -> str:
    return "\n".join(f"> {line}" for line in (text or "").split("\n"))


def narrow_url(realm: str, channel: str, topic: str, message_id: int) -> str:
    return (
        f"{realm}/#narrow/channel/{_url_quote(channel, safe='')}"
        f"/topic/{_url_quote(topic, safe='')}/near/{message_id}"
    )
