"""Key/value store behind the runtime settings."""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import select

from shop_agent.models import SettingRecord
from .base import BaseRepository


class SettingsRepository(BaseRepository):

    def get(self, key: str) -> Optional[SettingRecord]:
        with self._read("get_setting") as session:
            return session.get(SettingRecord, key)

    def set(self, key: str, value: Any) -> None:
        with self._write("set_setting") as session:
            session.merge(SettingRecord(key=key, value=value, updated_at=datetime.utcnow()))

    def all(self) -> Dict[str, Any]:
        with self._read("all_settings") as session:
            return {row.key: row.value for row in session.exec(select(SettingRecord)).all()}
