# src/zulip_companion/dashboards/rss.py

"""
RSS/Atom feed dashboard.

Every tick fetches the feed, keeps the pinned message showing the latest
items and posts items that were not seen before as separate messages. The
first tick of an instance only records what is already in the feed.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from urllib.parse import urlparse, urlunparse

import httpx

from .registry import DashboardDef

logger = logging.getLogger(__name__)

USER_AGENT = "ZulipCompanion-RSS/1.0"
MAX_DISPLAY_ITEMS = 10
DESCRIPTION_MAX_CHARS = 200
OG_IMAGE_TIMEOUT_SECONDS = 5.0
OG_IMAGE_HEAD_CHARS = 20_000
USAGE_HINT = "Usage: `dashboard start rss <url>`"

_IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_OG_IMAGE_RES = (
    re.compile(
        r"""<meta[^>]+(?:property=["']og:image["']|name=["']twitter:image["'])[^>]+content=["']([^"']+)["']""",
        re.IGNORECASE,
    ),
    re.compile(
        r"""<meta[^>]+content=["']([^"']+)["'][^>]+(?:property=["']og:image["']|name=["']twitter:image["'])""",
        re.IGNORECASE,
    ),
)
_IMAGE_EXT_RE = re.compile(r"\.(jpe?g|png|gif|webp|svg|avif)$", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")


class FeedFetchError(RuntimeError):
    """The feed could not be fetched while the instance still has to record its existing items."""


@dataclass(slots=True)
class FeedItem:
    guid: str
    title: str
    link: str
    description: str
    pub_date: str
    image: str = ""


@dataclass(slots=True)
class Feed:
    title: str
    items: list[FeedItem] = field(default_factory=list)


# ---- XML helpers ----


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def _children(node: ET.Element, name: str) -> list[ET.Element]:
    return [c for c in node if _local_name(c.tag) == name]


def _find_text(node: ET.Element, *names: str) -> str:
    for name in names:
        for child in _children(node, name):
            if child.text and child.text.strip():
                return child.text.strip()
    return ""


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


def _image_from_item(item: ET.Element) -> str:
    for enc in _children(item, "enclosure"):
        url = enc.attrib.get("url", "")
        if url and enc.attrib.get("type", "").startswith("image/"):
            return url

    # media:content / media:thumbnail; Atom <content> never carries a url attribute.
    for name in ("content", "thumbnail"):
        for media in _children(item, name):
            url = media.attrib.get("url", "")
            medium = media.attrib.get("medium", "")
            if url and medium in ("", "image"):
                return url

    html_body = _find_text(item, "description", "encoded", "content", "summary")
    m = _IMG_SRC_RE.search(html_body)
    return m.group(1) if m else ""


def _atom_link(entry: ET.Element) -> str:
    links = _children(entry, "link")
    for link in links:
        href = link.attrib.get("href", "").strip()
        if href and link.attrib.get("rel", "alternate") in ("alternate", ""):
            return href
    if links:
        return (links[0].attrib.get("href") or links[0].text or "").strip()
    return ""


def parse_feed(xml_text: str) -> Feed:
    """Parse RSS 2.0, RDF (RSS 1.0) or Atom. Raises ValueError on anything else."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"Invalid feed XML: {e}") from e

    root_name = _local_name(root.tag)

    if root_name == "feed":
        items: list[FeedItem] = []
        for entry in _children(root, "entry"):
            title = _find_text(entry, "title")
            link = _atom_link(entry)
            updated = _find_text(entry, "updated", "published")
            items.append(
                FeedItem(
                    guid=_find_text(entry, "id") or link or _sha1(f"{title}{updated}"),
                    title=title,
                    link=link,
                    description=strip_html(_find_text(entry, "summary", "content")),
                    pub_date=updated,
                    image=_image_from_item(entry),
                )
            )
        return Feed(title=_find_text(root, "title") or "Atom Feed", items=items)

    if root_name in ("rss", "rdf"):
        channels = _children(root, "channel")
        channel = channels[0] if channels else root
        entries = _children(channel, "item")
        if not entries and root_name == "rdf":
            entries = _children(root, "item")

        items = []
        for it in entries:
            title = _find_text(it, "title")
            link = _find_text(it, "link")
            pub_date = _find_text(it, "pubdate", "date", "updated")
            items.append(
                FeedItem(
                    guid=_find_text(it, "guid") or link or _sha1(f"{title}{pub_date}"),
                    title=title,
                    link=link,
                    description=strip_html(_find_text(it, "description")),
                    pub_date=pub_date,
                    image=_image_from_item(it),
                )
            )
        return Feed(title=_find_text(channel, "title") or "RSS Feed", items=items)

    raise ValueError("Unrecognised feed format")


# ---- rendering ----


def clean_image_url(url: str) -> str:
    """Drop the query string of URLs whose path already ends in an image extension."""
    try:
        parts = urlparse(url)
    except ValueError:
        return url
    if parts.scheme and _IMAGE_EXT_RE.search(parts.path):
        return urlunparse(parts._replace(query=""))
    return url


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "…"


def _parse_date(raw: str) -> datetime | None:
    try:
        dt = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        try:
            dt = datetime.fromisoformat(raw.strip())
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_age(raw: str, *, now: datetime | None = None) -> str:
    dt = _parse_date(raw)
    if dt is None:
        return raw
    now = now or datetime.now(UTC)
    mins = int((now - dt).total_seconds() // 60)
    if mins < 1:
        return "just now"
    if mins < 60:
        return f"{mins}m ago"
    hours = mins // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def render_item(item: FeedItem) -> str:
    title = item.title or "Untitled"
    head = f"**[{title}]({item.link})**" if item.link else f"**{title}**"
    if item.pub_date:
        head += f" · *{format_age(item.pub_date)}*"

    lines = [head]
    if item.description:
        lines.append(_truncate(item.description, DESCRIPTION_MAX_CHARS))
    if item.image:
        # Zulip embeds a bare image URL on its own line.
        lines.append("")
        lines.append(clean_image_url(item.image))
    return "\n".join(lines)


def render_feed(feed: Feed, interval_seconds: float, *, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    next_at = now + timedelta(seconds=interval_seconds)
    lines = [
        f"## {feed.title}",
        f"*Updated {now:%I:%M %p} UTC · Next at {next_at:%I:%M %p} UTC · React :refresh: to refresh*",
        "",
    ]

    display = feed.items[:MAX_DISPLAY_ITEMS]
    for i, item in enumerate(display):
        lines.append(render_item(item))
        if i < len(display) - 1:
            lines.extend(["", "---", ""])
    return "\n".join(lines)


# ---- dashboard ----


class RssDashboard(DashboardDef):
    description = "RSS/Atom feed watcher"
    usage = "rss <url>"
    interval_seconds = 5 * 60.0

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    def validate_params(self, params: str) -> str | None:
        url = (params or "").strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return USAGE_HINT
        return None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            timeout=httpx.Timeout(30.0),
            transport=self._transport,
        )

    async def _og_image(self, http: httpx.AsyncClient, url: str) -> str:
        try:
            resp = await http.get(url, timeout=OG_IMAGE_TIMEOUT_SECONDS)
        except httpx.HTTPError:
            return ""
        if not resp.is_success:
            return ""
        head = resp.text[:OG_IMAGE_HEAD_CHARS]
        for rx in _OG_IMAGE_RES:
            m = rx.search(head)
            if m:
                return m.group(1)
        return ""

    async def _resolve_images(self, http: httpx.AsyncClient, items: list[FeedItem]) -> None:
        async def resolve(item: FeedItem) -> None:
            if not item.image and item.link:
                item.image = await self._og_image(http, item.link)

        await asyncio.gather(*(resolve(it) for it in items))

    async def render(self, instance, ctx, store) -> str:
        url = instance.params.strip()
        started = time.monotonic()

        async with self._client() as http:
            resp = await http.get(url)
            if not resp.is_success:
                logger.warning("RSS fetch failed url=%s status=%s", url, resp.status_code)
                if not instance.bootstrapped:
                    # Nothing recorded yet; the instance must not be marked bootstrapped.
                    raise FeedFetchError(f"HTTP {resp.status_code} from {url}")
                return f"**RSS** | Failed to fetch feed (HTTP {resp.status_code})"

            feed = parse_feed(resp.text)
            await self._resolve_images(http, feed.items[:MAX_DISPLAY_ITEMS])

        if not instance.bootstrapped:
            for item in feed.items:
                store.mark_seen(instance.id, item.guid)
            logger.info(
                "RSS bootstrap dashboard=%s items=%s url=%s", instance.id, len(feed.items), url
            )
        else:
            new_items = [item for item in feed.items if store.mark_seen(instance.id, item.guid)]
            # Feeds list newest first; post oldest first.
            for item in reversed(new_items):
                await ctx.client.send_message(instance.channel, instance.topic, render_item(item))
            if new_items:
                logger.info("RSS posted %s new item(s) dashboard=%s", len(new_items), instance.id)

        logger.debug("RSS tick dashboard=%s took %.2fs", instance.id, time.monotonic() - started)
        return render_feed(feed, instance.interval_seconds)
