"""Conversation logs: JSON files on disk and the MCP ``record_interaction`` tool."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, cast

from ..interfaces import ConversationLog, ToolRuntime
from ..schema import ExchangeRecord, JSONValue

LOGGER = logging.getLogger(__name__)

RECORD_INTERACTION_TOOL = "record_interaction"


def _ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


class LocalConversationLog(ConversationLog):
    """Persist each exchange as one JSON file within a directory."""

    def __init__(self, directory: Path | str):
        self._directory = Path(directory)
        _ensure_directory(self._directory)

    @property
    def directory(self) -> Path:
        return self._directory

    async def record(self, exchange: ExchangeRecord) -> None:
        payload = cast(dict[str, JSONValue], exchange.model_dump(mode="json"))
        _ensure_directory(self._directory)
        file_path = self._directory / f"exchange-{exchange.exchange_id}.json"
        file_path.write_text(
            json.dumps(payload, ensure_ascii=False, sort_keys=True),
            encoding="utf-8",
        )
        LOGGER.debug("recorded exchange %s to %s", exchange.exchange_id, file_path)

    def read_all(self) -> list[ExchangeRecord]:
        """Return every recorded exchange, oldest first."""

        if not self._directory.exists():
            return []
        records = [
            cast(ExchangeRecord, ExchangeRecord.model_validate_json(path.read_text(encoding="utf-8")))
            for path in self._directory.iterdir()
            if path.suffix == ".json"
        ]
        return sorted(records, key=lambda record: record.recorded_at)


class McpConversationLog(ConversationLog):
    """Hand exchanges to the game server through its ``record_interaction`` tool."""

    def __init__(
        self,
        runtime: ToolRuntime,
        *,
        campaign_name: Optional[str] = None,
        session_number: Optional[int] = None,
    ):
        self._runtime = runtime
        self._campaign_name = campaign_name
        self._session_number = session_number

    async def record(self, exchange: ExchangeRecord) -> None:
        arguments: dict[str, JSONValue] = {
            "player_entry": exchange.user_text,
            "game_response": exchange.assistant_text,
        }
        if self._campaign_name:
            arguments["campaign_name"] = self._campaign_name
        if self._session_number is not None:
            arguments["session_number"] = self._session_number
        await self._runtime.call_tool(RECORD_INTERACTION_TOOL, arguments)
        LOGGER.debug("recorded exchange %s via %s", exchange.exchange_id, RECORD_INTERACTION_TOOL)


__all__ = ["LocalConversationLog", "McpConversationLog"]
