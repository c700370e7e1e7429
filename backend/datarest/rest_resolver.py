"""
汎用RESTリソース（/rest/{datasetName}[/{index}]）の解決。

データセット1件の data 配列を、位置（index）で指定するCRUDとして公開する。
- 変更系はすべて「配列全体を読む → 1件だけ変更 → 配列全体を書き戻す」
- index は安定したIDではない。追加/削除の後は、以前取得した index は無効になる
- 行ロックはしない。同時書き込みは後勝ち（If-Match 指定時のみ version で検出）
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from .errors import InvalidRequestBody, RecordNotFound, UnsupportedMethod
from .models import Dataset
from .store import DatasetStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
REST_PREFIX = "/rest"

_MISSING = object()


@dataclass(frozen=True)
class RestRequest:
    method: str
    dataset_name: str | None = None
    record_index: str | None = None
    page: str | None = None
    limit: str | None = None
    body: Any = field(default=_MISSING, repr=False)
    expected_version: int | None = None

    @property
    def has_body(self) -> bool:
        return self.body is not _MISSING


@dataclass
class RestResponse:
    body: dict
    status_code: int = 200


def parse_rest_path(path: str) -> tuple[str | None, str | None]:
    """'/rest/{name}/{index}' 形式のパスから (name, index) を取り出す。余分なセグメントは UnsupportedMethod。"""
    segments = [s for s in (path or "").split("/") if s]
    if segments and segments[0] == REST_PREFIX.strip("/"):
        segments = segments[1:]
    if len(segments) > 2:
        raise UnsupportedMethod()
    name = segments[0] if len(segments) >= 1 else None
    index = segments[1] if len(segments) == 2 else None
    return name, index


def parse_positive_int(raw: str | None, default: int) -> int:
    """1以上の整数として解釈できなければ default を返す。"""
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value >= 1 else default


def resolve_index(raw: str | None, data: list) -> int:
    """index を [0, len(data)) の整数として解釈する。範囲外/非整数は RecordNotFound。"""
    try:
        index = int(str(raw).strip())
    except (TypeError, ValueError):
        raise RecordNotFound()
    if index < 0 or index >= len(data):
        raise RecordNotFound()
    return index


def paginate(data: list, page: int, limit: int) -> dict:
    offset = (page - 1) * limit
    total = len(data)
    return {
        "data": data[offset : offset + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


def dataset_endpoint(name: str) -> str:
    return f"{REST_PREFIX}/{name}"


class RestResolver:
    """
    リクエストを (method, データセット名有無, index有無) で分岐させる。
    どの組み合わせにも当たらない場合は UnsupportedMethod（405）。
    """

    def __init__(self, store: DatasetStore, *, default_limit: int = DEFAULT_LIMIT):
        self.store = store
        self.default_limit = default_limit
        # (method, index有無) → 処理
        self._routes = {
            ("GET", False): self.list_records,
            ("GET", True): self.get_record,
            ("POST", False): self.append_record,
            ("PUT", True): self.replace_record,
            ("DELETE", True): self.delete_record,
        }

    def handle(self, owner_id: str, request: RestRequest) -> RestResponse:
        method = (request.method or "").upper()
        hasName = bool(request.dataset_name)
        hasIndex = request.record_index is not None

        logger.info(
            "REST call: %s dataset=%s index=%s", method, request.dataset_name, request.record_index
        )

        if not hasName:
            if method == "GET" and not hasIndex:
                return self.list_datasets(owner_id)
            raise UnsupportedMethod()

        dataset = self.store.find_by_name(owner_id, request.dataset_name)

        handler = self._routes.get((method, hasIndex))
        if handler is None:
            raise UnsupportedMethod()
        return handler(dataset, request)

    def list_datasets(self, owner_id: str) -> RestResponse:
        items = []
        for d in self.store.list_datasets(owner_id):
            summary = d.toDict(includeData=False)
            items.append(
                {
                    "id": summary["id"],
                    "name": summary["name"],
                    "description": summary["description"],
                    "created_at": summary["created_at"],
                    "record_count": summary["record_count"],
                    "endpoint": dataset_endpoint(d.name),
                }
            )
        return RestResponse({"message": "Available datasets", "datasets": items})

    def list_records(self, dataset: Dataset, request: RestRequest) -> RestResponse:
        page = parse_positive_int(request.page, DEFAULT_PAGE)
        limit = parse_positive_int(request.limit, self.default_limit)
        body = paginate(list(dataset.data or []), page, limit)
        body["dataset"] = dataset.name
        return RestResponse(body)

    def get_record(self, dataset: Dataset, request: RestRequest) -> RestResponse:
        data = list(dataset.data or [])
        index = resolve_index(request.record_index, data)
        return RestResponse({"record": data[index], "index": index, "dataset": dataset.name})

    def append_record(self, dataset: Dataset, request: RestRequest) -> RestResponse:
        record = self._require_body(request)
        before = list(dataset.data or [])
        updated = before + [record]
        self.store.replace_data(dataset, updated, expected_version=request.expected_version)
        return RestResponse(
            {
                "message": "Record added successfully",
                "record": record,
                "index": len(before),
                "dataset": dataset.name,
                "version": dataset.version,
            },
            status_code=201,
        )

    def replace_record(self, dataset: Dataset, request: RestRequest) -> RestResponse:
        data = list(dataset.data or [])
        index = resolve_index(request.record_index, data)
        record = self._require_body(request)
        # マージではなく丸ごと置き換える
        data[index] = record
        self.store.replace_data(dataset, data, expected_version=request.expected_version)
        return RestResponse(
            {
                "message": "Record updated successfully",
                "record": record,
                "index": index,
                "dataset": dataset.name,
                "version": dataset.version,
            }
        )

    def delete_record(self, dataset: Dataset, request: RestRequest) -> RestResponse:
        data = list(dataset.data or [])
        index = resolve_index(request.record_index, data)
        deleted = data.pop(index)
        self.store.replace_data(dataset, data, expected_version=request.expected_version)
        return RestResponse(
            {
                "message": "Record deleted successfully",
                "deleted_record": deleted,
                "index": index,
                "dataset": dataset.name,
                "version": dataset.version,
            }
        )

    @staticmethod
    def _require_body(request: RestRequest):
        if not request.has_body:
            raise InvalidRequestBody("Request body must be JSON")
        if not isinstance(request.body, dict):
            raise InvalidRequestBody("Record must be a JSON object")
        return request.body
