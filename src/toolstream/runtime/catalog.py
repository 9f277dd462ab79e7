"""Time-bounded cache in front of a tool runtime's tool listing."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from toolstream.core.adapters.toolbridge import ToolDescriptor, filter_by_modes
from toolstream.core.errors import AdapterError
from toolstream.io.interfaces import ToolRuntime

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class ToolCatalog:
    """Cache tool descriptors for ``ttl`` seconds.

    The catalog is owned by whoever builds the orchestrator and passed around
    by reference. When a refresh fails and a previous listing exists, the stale
    listing is served and a warning is logged.
    """

    def __init__(
        self,
        runtime: ToolRuntime,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl < 0:
            msg = "ttl must be non-negative"
            raise ValueError(msg)
        self._runtime = runtime
        self._ttl = ttl
        self._clock = clock
        self._descriptors: tuple[ToolDescriptor, ...] | None = None
        self._fetched_at = 0.0

    @property
    def cached(self) -> bool:
        return self._descriptors is not None

    def clear(self) -> None:
        self._descriptors = None
        self._fetched_at = 0.0

    async def descriptors(self, active_modes: Sequence[str] = ()) -> list[ToolDescriptor]:
        now = self._clock()
        if self._descriptors is None or now - self._fetched_at >= self._ttl:
            await self._refresh(now)
        return filter_by_modes(self._descriptors or (), active_modes)

    async def _refresh(self, now: float) -> None:
        try:
            raw_tools = await self._runtime.list_tools()
            descriptors = tuple(_build_descriptors(raw_tools))
        except Exception as exc:
            if self._descriptors is None:
                raise
            LOGGER.warning("tool listing failed, serving stale catalog: %s", exc)
            return

        LOGGER.info("loaded %s tools", len(descriptors))
        self._descriptors = descriptors
        self._fetched_at = now


def _build_descriptors(raw_tools: Sequence[Any]) -> list[ToolDescriptor]:
    descriptors = []
    seen: set[str] = set()
    for raw in raw_tools:
        try:
            descriptor = ToolDescriptor.from_mcp(raw)
        except AdapterError as exc:
            LOGGER.warning("skipping invalid tool definition: %s", exc)
            continue
        if descriptor.name in seen:
            LOGGER.warning("skipping duplicate tool definition %s", descriptor.name)
            continue
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    return descriptors
