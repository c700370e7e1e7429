from datetime import datetime

from sqlalchemy import JSON, String, Integer, Text, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates
from .db import Base

# PostgreSQLではJSONB、それ以外（テスト用SQLite）では汎用JSON
JsonArray = JSON().with_variant(JSONB(), "postgresql")


class Dataset(Base):
    __tablename__ = "uploaded_datasets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[list] = mapped_column(JsonArray, nullable=False, default=list)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @validates("user_id")
    def validateUserId(self, key: str, value: str) -> str:
        """目的: 一度設定した所有者（user_id）の付け替えを禁止する。"""
        current = self.__dict__.get("user_id")
        if current is not None and current != value:
            raise ValueError("user_id is immutable once set")
        return value

    def toDict(self, *, includeData: bool = True) -> dict:
        out = {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "record_count": self.record_count,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "version": self.version,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if includeData:
            out["data"] = self.data
        return out


class FileHistory(Base):
    __tablename__ = "file_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def toDict(self) -> dict:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "action": self.action,
            "user_id": self.user_id,
            "created_at": _isoformat(self.created_at),
        }


def _isoformat(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
