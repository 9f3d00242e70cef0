# src/zulip_companion/services/loader.py

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..core.context import ServiceContext
from .base import BaseService

logger = logging.getLogger(__name__)


def service_env_key(name: str) -> str:
    return f"SERVICE_{name.upper().replace('-', '_')}"


async def load_services(
        ctx: ServiceContext,
        candidates: Sequence[BaseService],
        *,
        active: list[BaseService] | None = None,
) -> list[BaseService]:
    """
    Enable services by `SERVICE_<NAME>` toggles (falling back to each
    service's `default_enabled`) and run their `init` hooks in order.

    `active` is filled in place before any `init` runs, so components that
    hold a reference to it (the help dashboard) see the final list.
    A failing `init` is logged and the service stays active.
    """
    if active is None:
        active = []
    active.clear()

    for service in candidates:
        if not ctx.settings.service_enabled(service.name, service.default_enabled):
            logger.info("  [%s] disabled (%s=false)", service.name, service_env_key(service.name))
            continue
        active.append(service)

    for service in list(active):
        try:
            await service.init()
        except Exception:
            logger.exception("Failed to init service %s", service.name)
        logger.info("  [%s] %s", service.name, service.description)

    logger.info("%s service(s) active", len(active))
    return active
