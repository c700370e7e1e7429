import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import DatasetNotFound, StoreFailure, VersionConflict
from .models import Dataset, FileHistory

logger = logging.getLogger(__name__)

HISTORY_ACTIONS = ("upload", "download")
MUTABLE_METADATA = ("name", "description")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatasetStore:
    """
    外部ストア（DB）との境界。
    - データセットは「data配列全体 + メタ情報」を1行として扱う
    - すべての読み書きは所有者（user_id）で絞り込む
    - 書き込みは1操作ごとに commit / rollback し、部分的な反映を残さない
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _writing(self, operation: str):
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Store write failed during %s", operation)
            raise StoreFailure(f"DB error: {type(e).__name__}: {_first_line(e)}") from e

    def _reading(self, statement):
        try:
            return self.db.execute(statement)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Store read failed")
            raise StoreFailure(f"DB error: {type(e).__name__}: {_first_line(e)}") from e

    def create(
        self,
        owner_id: str,
        name: str,
        data: list,
        *,
        description: str | None = None,
        file_type: str | None = None,
        file_size: int | None = None,
        upload_file_name: str | None = None,
    ) -> Dataset:
        """upload_file_name 指定時は、同じトランザクションで upload 履歴も書き込む。"""
        ds = Dataset(
            user_id=owner_id,
            name=name,
            description=description,
            data=list(data),
            record_count=len(data),
            file_type=file_type,
            file_size=file_size,
            version=1,
        )
        with self._writing("create"):
            self.db.add(ds)
            if upload_file_name is not None:
                self.db.add(FileHistory(file_name=upload_file_name, action="upload", user_id=owner_id))
            self.db.flush()  # ds.id を確定させる
        self.db.refresh(ds)
        return ds

    def get(self, owner_id: str, dataset_id) -> Dataset:
        """所有者のデータセットをIDで取得する。他人のものと存在しないものは区別しない。"""
        try:
            datasetId = int(dataset_id)
        except (TypeError, ValueError):
            raise DatasetNotFound()

        ds = self._reading(
            select(Dataset).where(Dataset.id == datasetId, Dataset.user_id == owner_id)
        ).scalar_one_or_none()
        if ds is None:
            raise DatasetNotFound()
        return ds

    def find_by_name(self, owner_id: str, name: str) -> Dataset:
        """名前で解決する。同名が複数ある場合は最も新しく作成されたものを採用する。"""
        ds = self._reading(
            select(Dataset)
            .where(Dataset.user_id == owner_id, Dataset.name == name)
            .order_by(Dataset.created_at.desc(), Dataset.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if ds is None:
            raise DatasetNotFound()
        return ds

    def list_datasets(self, owner_id: str) -> list[Dataset]:
        return list(
            self._reading(
                select(Dataset)
                .where(Dataset.user_id == owner_id)
                .order_by(Dataset.created_at.desc(), Dataset.id.desc())
            ).scalars()
        )

    def replace_data(self, dataset: Dataset, data: list, *, expected_version: int | None = None) -> Dataset:
        """
        目的: data配列全体を書き戻す（read-modify-write の write 側）。
        - record_count は常に len(data) と一致させる
        - expected_version 指定時のみ version を条件にし、不一致なら VersionConflict
        """
        conditions = [Dataset.id == dataset.id, Dataset.user_id == dataset.user_id]
        if expected_version is not None:
            conditions.append(Dataset.version == expected_version)

        statement = (
            update(Dataset)
            .where(*conditions)
            .values(
                data=list(data),
                record_count=len(data),
                version=Dataset.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._writing("replace_data"):
            result = self.db.execute(statement)
            matched = result.rowcount

        if matched == 0:
            if expected_version is not None:
                raise VersionConflict(
                    f"Dataset version mismatch (expected {expected_version})"
                )
            raise DatasetNotFound()

        self.db.refresh(dataset)
        return dataset

    def update_metadata(self, dataset: Dataset, fields: dict) -> Dataset:
        """name / description の更新。data を含む場合は replace_data と同じ不変条件で書く。"""
        with self._writing("update_metadata"):
            for key in MUTABLE_METADATA:
                if key in fields:
                    setattr(dataset, key, fields[key])
            if "data" in fields:
                dataset.data = list(fields["data"])
                dataset.record_count = len(dataset.data)
                dataset.version = dataset.version + 1
            dataset.updated_at = utcnow()
        self.db.refresh(dataset)
        return dataset

    def delete(self, dataset: Dataset) -> None:
        with self._writing("delete"):
            self.db.delete(dataset)

    def add_history(self, file_name: str, action: str, owner_id: str | None) -> FileHistory:
        if action not in HISTORY_ACTIONS:
            raise ValueError(f"Unsupported history action: {action}")
        entry = FileHistory(file_name=file_name, action=action, user_id=owner_id)
        with self._writing("add_history"):
            self.db.add(entry)
        return entry

    def list_history(self, owner_id: str, *, action: str | None = None, limit: int = 50) -> list[FileHistory]:
        statement = select(FileHistory).where(FileHistory.user_id == owner_id)
        if action:
            statement = statement.where(FileHistory.action == action)
        statement = statement.order_by(FileHistory.created_at.desc(), FileHistory.id.desc()).limit(limit)
        return list(self._reading(statement).scalars())


def _first_line(e: Exception) -> str:
    text = str(getattr(e, "orig", None) or e)
    return text.splitlines()[0] if text else ""
