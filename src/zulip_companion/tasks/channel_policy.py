# src/zulip_companion/tasks/channel_policy.py

"""
Where promoted tasks are posted.

- A channel named `<prefix>` or `<prefix>-*` already is a tasks channel.
- A source channel inside a folder shares one `<prefix>` channel placed in
  the same folder (when folder colocation is on).
- Any other source channel gets its own `<prefix>-<slug>` channel.

A newly created tasks channel starts with the subscribers of the source
channel. If Zulip does not confirm the creation the task stays in the
source channel.
"""

from __future__ import annotations

import logging
import re

from ..core.models import Channel
from ..core.ports import MessagingGateway

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


class TasksChannelPolicy:
    def __init__(
            self,
            client: MessagingGateway,
            *,
            prefix: str = "tasks",
            folder_colocation: bool = True,
    ) -> None:
        self._client = client
        self.prefix = prefix
        self.folder_colocation = folder_colocation
        self._cache: dict[str, str] = {}

    def is_tasks_channel(self, channel: str) -> bool:
        prefix = self.prefix.lower()
        name = channel.lower()
        return name == prefix or name.startswith(f"{prefix}-")

    def _target_name(self, source_channel: str, folder_id: int | None) -> str:
        if folder_id:
            return self.prefix
        slug = _WS_RE.sub("-", source_channel.lower())
        return f"{self.prefix}-{slug}"

    @staticmethod
    def _find(channels: list[Channel], name: str) -> Channel | None:
        wanted = name.lower()
        return next((c for c in channels if c.name.lower() == wanted), None)

    async def _subscriber_emails(self, source: Channel | None) -> list[str]:
        if source is None:
            return []
        member_ids = await self._client.get_channel_members(source.stream_id)
        if not member_ids:
            return []
        emails = {u.user_id: u.email for u in await self._client.list_users()}
        return [emails[uid] for uid in member_ids if emails.get(uid)]

    async def resolve(self, source_channel: str) -> str:
        """Name of the channel that receives task cards for `source_channel`."""
        if self.is_tasks_channel(source_channel):
            return source_channel

        cached = self._cache.get(source_channel)
        if cached is not None:
            return cached

        channels = await self._client.list_channels()
        source = self._find(channels, source_channel)
        folder_id = source.folder_id if (source is not None and self.folder_colocation) else None

        target = self._target_name(source_channel, folder_id)
        existing = self._find(channels, target)

        if existing is None:
            principals = await self._subscriber_emails(source)
            where = " in this folder" if folder_id else ""
            created = await self._client.create_channel(
                target, f"Tasks promoted from channels{where}", principals
            )
            if not created:
                logger.error("Failed to create tasks channel #%s; using #%s", target, source_channel)
                self._cache[source_channel] = source_channel
                return source_channel

            logger.info("Created tasks channel #%s with %s subscribers", target, len(principals))

            if folder_id:
                fresh = self._find(await self._client.list_channels(), target)
                if fresh is not None:
                    try:
                        await self._client.set_channel_folder(fresh.stream_id, folder_id)
                        logger.info("Moved #%s to folder %s", target, folder_id)
                    except Exception:
                        logger.exception("Failed to move #%s to folder %s", target, folder_id)

        elif folder_id and existing.folder_id != folder_id:
            try:
                await self._client.set_channel_folder(existing.stream_id, folder_id)
            except Exception:
                logger.exception("Failed to move #%s to folder %s", target, folder_id)

        self._cache[source_channel] = target
        return target
