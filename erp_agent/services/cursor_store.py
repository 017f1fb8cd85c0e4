import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union
from erp_agent.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CursorStore:
    """
    Хранение времени последней успешной синхронизации в JSON-файле.

    Формат файла: {"lastSync": "<ISO-8601>"}. Единственный писатель курсора -
    цикл синхронизации, поэтому блокировок нет.
    """

    def __init__(
        self,
        path: Union[str, Path],
        bootstrap_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow
    ):
        self.path = Path(path)
        self.bootstrap_seconds = bootstrap_seconds
        self._clock = clock

    def read(self) -> datetime:
        """Последний сохраненный курсор; если его нет - now минус окно bootstrap"""
        try:
            if self.path.exists():
                data = json.loads(self.path.read_text(encoding="utf-8"))
                return self._parse(data["lastSync"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not read sync cursor from {self.path}, using default window: {e}")

        return self._clock() - timedelta(seconds=self.bootstrap_seconds)

    def peek(self) -> Optional[datetime]:
        """Сохраненное значение без подстановки окна по умолчанию"""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return self._parse(data["lastSync"])
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def write(self, timestamp: datetime) -> None:
        """Атомарная запись курсора: временный файл + replace"""
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        payload = json.dumps({"lastSync": timestamp.astimezone(timezone.utc).isoformat()})
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save sync cursor to {self.path}: {e}")
            raise PersistenceError(f"Cursor not saved: {e}") from e

        logger.debug(f"Sync cursor advanced to {timestamp.isoformat()}")

    @staticmethod
    def _parse(value: str) -> datetime:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
