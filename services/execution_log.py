import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionLogEntry:
    action_type: str
    scheduled_time: str
    executed_at: str
    status: str  # success / failure / skipped
    trigger: str  # scheduled / manual / immediate / batch
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    screenshot_before: Optional[str] = None
    screenshot_after: Optional[str] = None


class ExecutionLog:
    """追記専用の実行履歴。path を指定するとJSON Linesにも書き出す"""

    def __init__(self, path: Optional[str] = None):
        self._entries: list[ExecutionLogEntry] = []
        self._path = Path(path) if path else None
        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        self._entries.append(entry)
        if self._path:
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(entry), ensure_ascii=False) + "\n")
        logger.debug("[Log] %s %s (%s)", entry.action_type, entry.status, entry.trigger)
        return entry

    def entries(self, limit: Optional[int] = None) -> list[ExecutionLogEntry]:
        """新しい順"""
        items = list(reversed(self._entries))
        return items[:limit] if limit else items

    def for_day(self, day: str) -> list[ExecutionLogEntry]:
        return [e for e in self._entries if e.executed_at.startswith(day)]

    def __len__(self) -> int:
        return len(self._entries)
