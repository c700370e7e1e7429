import json
import logging
import os
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import SessionLocal, engine
from .errors import DatasetApiError, EmptyOrInvalidContent, InvalidRequestBody
from .identity import IdentityConfig, IdentityProvider, authenticate, build_identity_provider
from .models import Base
from .parser import dataset_name_from_filename, decode_upload, extension_of, parse, reject_json_constant
from .rest_resolver import DEFAULT_LIMIT, RestRequest, RestResolver, dataset_endpoint, parse_rest_path
from .schema_inference import infer
from .store import HISTORY_ACTIONS, DatasetStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Dataset REST Engine", version="0.1.0")

# CORS（ブラウザアクセス向け）
# 例: "http://localhost:3001,http://127.0.0.1:3001" のようにカンマ区切り。"*" で全許可
originsEnv = os.getenv("CORS_ALLOW_ORIGINS", "*")
allowOrigins = [o.strip() for o in originsEnv.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowOrigins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "if-match"],
)

# PoC：起動時にテーブルが無ければ作る（本番はAlembicで管理）
Base.metadata.create_all(bind=engine)

restDefaultLimit = int(os.getenv("REST_DEFAULT_LIMIT", str(DEFAULT_LIMIT)))

REST_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]


def ensureJsonCompliant(value: Any) -> Any:
    """目的: NaN / Infinity を含む値を拒否する（JSONとして書き出せないため）。"""
    try:
        json.dumps(value, allow_nan=False)
    except ValueError:
        raise ValueError("data must not contain NaN or Infinity")
    return value


class DatasetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    data: Any = None

    @field_validator("data")
    @classmethod
    def checkData(cls, value: Any) -> Any:
        return ensureJsonCompliant(value)


class DatasetUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    data: Any = None

    @field_validator("data")
    @classmethod
    def checkData(cls, value: Any) -> Any:
        return ensureJsonCompliant(value)


def getDb():
    """目的: リクエスト単位のDBセッションを提供し、終了時に必ず閉じる。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def getDatasetStore(db=Depends(getDb)) -> DatasetStore:
    return DatasetStore(db)


@lru_cache(maxsize=1)
def getIdentityProvider() -> IdentityProvider:
    """目的: 認証基盤クライアントをプロセスで1つだけ構築する（テストでは dependency_overrides で差し替える）。"""
    return build_identity_provider(IdentityConfig.from_env())


def getOwnerId(
    authorization: str | None = Header(None),
    provider: IdentityProvider = Depends(getIdentityProvider),
) -> str:
    """目的: Bearerトークンから呼び出し元の所有者IDを解決する。"""
    return authenticate(provider, authorization)


async def readJsonBody(request: Request) -> Any:
    """目的: /rest 用にリクエストボディをJSONとして読む。空ボディは未指定として扱う。"""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw, parse_constant=reject_json_constant)
    except ValueError:
        raise InvalidRequestBody("Request body must be valid JSON")


def parseIfMatch(ifMatch: str | None) -> int | None:
    if ifMatch is None:
        return None
    value = ifMatch.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    try:
        return int(value)
    except ValueError:
        raise InvalidRequestBody("If-Match must be a dataset version number")


def fileLinks(datasetId: int, name: str) -> dict:
    return {"download_url": f"/files/download/{datasetId}", "api_url": dataset_endpoint(name)}


@app.exception_handler(DatasetApiError)
async def handleDatasetApiError(request: Request, exc: DatasetApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def handleHttpException(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def handleValidationError(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def handleUnexpectedError(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


@app.get("/health")
def health():
    """目的: 稼働確認用のヘルスチェック結果を返す。"""
    return {"status": "ok"}


# ---- /datasets ----

@app.get("/datasets")
def listDatasets(ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: 呼び出し元のデータセット一覧（新しい順）を返す。"""
    datasets = [d.toDict() for d in store.list_datasets(ownerId)]
    return {"data": datasets, "count": len(datasets)}


@app.get("/datasets/{datasetId}")
def getDataset(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: データセット1件（data配列を含む）を返す。"""
    return store.get(ownerId, datasetId).toDict()


@app.post("/datasets", status_code=201)
def createDataset(
    payload: DatasetCreate,
    ownerId: str = Depends(getOwnerId),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: JSONで渡されたレコード配列からデータセットを作成する。"""
    data = payload.data
    if data is None:
        data = []
    elif not isinstance(data, list):
        data = [data]
    if not data:
        raise EmptyOrInvalidContent("Dataset data must contain at least one record")

    ds = store.create(ownerId, payload.name, data, description=payload.description, file_type="json")
    logger.info("Dataset created: id=%s name=%s records=%s", ds.id, ds.name, ds.record_count)
    return ds.toDict()


@app.put("/datasets/{datasetId}")
def updateDataset(
    datasetId: str,
    payload: DatasetUpdate,
    ownerId: str = Depends(getOwnerId),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: name/description/data を更新する（所有者 user_id は変更できない）。"""
    ds = store.get(ownerId, datasetId)
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("data") is not None and not isinstance(fields["data"], list):
        fields["data"] = [fields["data"]]
    elif "data" in fields and fields["data"] is None:
        fields.pop("data")
    return store.update_metadata(ds, fields).toDict()


@app.delete("/datasets/{datasetId}")
def deleteDataset(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: データセットを完全に削除する（論理削除はしない）。"""
    ds = store.get(ownerId, datasetId)
    store.delete(ds)
    logger.info("Dataset deleted: id=%s", datasetId)
    return {"message": "Dataset deleted successfully"}


@app.get("/datasets/{datasetId}/schema")
def getDatasetSchema(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: 先頭レコードからフィールドごとの推奨名・型を推定して返す（保存はしない）。"""
    ds = store.get(ownerId, datasetId)
    fields = infer(list(ds.data or []))
    return {"dataset_id": ds.id, "dataset": ds.name, "fields": [f.toDict() for f in fields]}


# ---- /rest ----

def handleRest(
    request: Request,
    restPath: str,
    body: Any,
    ownerId: str,
    store: DatasetStore,
) -> JSONResponse:
    datasetName, recordIndex = parse_rest_path(restPath)
    fields = {
        "method": request.method,
        "dataset_name": datasetName,
        "record_index": recordIndex,
        "page": request.query_params.get("page"),
        "limit": request.query_params.get("limit"),
        "expected_version": parseIfMatch(request.headers.get("if-match")),
    }
    # ボディなし（空）は「未指定」として区別する
    if body is not None:
        fields["body"] = body
    restRequest = RestRequest(**fields)
    result = RestResolver(store, default_limit=restDefaultLimit).handle(ownerId, restRequest)
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.api_route("/rest", methods=REST_METHODS)
def restRoot(
    request: Request,
    ownerId: str = Depends(getOwnerId),
    body: Any = Depends(readJsonBody),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: データセット名なしの /rest（利用可能なデータセット一覧）。"""
    return handleRest(request, "", body, ownerId, store)


@app.api_route("/rest/{restPath:path}", methods=REST_METHODS)
def restResource(
    request: Request,
    restPath: str,
    ownerId: str = Depends(getOwnerId),
    body: Any = Depends(readJsonBody),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: /rest/{datasetName}[/{index}] を汎用CRUDとして処理する。"""
    return handleRest(request, restPath, body, ownerId, store)


# ---- /files ----

@app.get("/files/list")
def listFiles(ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: アップロード済みファイル（=データセット）の一覧を、ダウンロード/APIリンク付きで返す。"""
    files = []
    for d in store.list_datasets(ownerId):
        item = d.toDict(includeData=False)
        item.update(fileLinks(d.id, d.name))
        files.append(item)
    return {"files": files}


@app.get("/files/info/{datasetId}")
def getFileInfo(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: ファイル1件のメタ情報（data配列を除く）を返す。"""
    ds = store.get(ownerId, datasetId)
    item = ds.toDict(includeData=False)
    item.update(fileLinks(ds.id, ds.name))
    return {"file": item}


@app.get("/files/history")
def listFileHistory(
    action: str | None = None,
    limit: int = 50,
    ownerId: str = Depends(getOwnerId),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: アップロード/ダウンロード履歴を新しい順に返す。"""
    if action is not None and action not in HISTORY_ACTIONS:
        raise InvalidRequestBody(f"action must be one of: {', '.join(HISTORY_ACTIONS)}")
    limit = max(1, min(limit, 500))
    return {"history": [h.toDict() for h in store.list_history(ownerId, action=action, limit=limit)]}


@app.get("/files/download/{datasetId}")
def downloadFile(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: data配列を整形済みJSONとして添付ファイル形式で返す。"""
    ds = store.get(ownerId, datasetId)
    fileName = f"{ds.name}.json"
    content = json.dumps(ds.data, indent=2, ensure_ascii=False)
    store.add_history(fileName, "download", ownerId)
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{fileName}"'},
    )


@app.post("/files/upload", status_code=201)
async def uploadFile(
    file: UploadFile | None = File(None),
    name: str | None = Form(None),
    description: str | None = Form(None),
    ownerId: str = Depends(getOwnerId),
    store: DatasetStore = Depends(getDatasetStore),
):
    """目的: ファイルを受け取り、レコード配列に正規化して1データセットとして保存する。"""
    if file is None or not file.filename:
        raise EmptyOrInvalidContent("No file provided")

    # 1) バイト列取得 → 文字列化（UTF-8前提）
    raw = await file.read()
    text = decode_upload(raw)

    # 2) 解析。0件ならここで失敗し、何も保存しない
    fileType = extension_of(file.filename) or "json"
    records = parse(text, fileType)

    datasetName = dataset_name_from_filename(name or file.filename)
    fileSize = len(raw)
    ds = store.create(
        ownerId,
        datasetName,
        records,
        description=description or f"Uploaded via API ({fileSize / 1024:.2f} KB)",
        file_type=fileType,
        file_size=fileSize,
        upload_file_name=file.filename,
    )
    logger.info("File uploaded: id=%s name=%s records=%s", ds.id, ds.name, ds.record_count)

    return {
        "message": "File uploaded successfully",
        "file": {
            "id": ds.id,
            "name": ds.name,
            "record_count": ds.record_count,
            **fileLinks(ds.id, ds.name),
        },
    }


@app.delete("/files/{datasetId}")
def deleteFile(datasetId: str, ownerId: str = Depends(getOwnerId), store: DatasetStore = Depends(getDatasetStore)):
    """目的: ファイル（=データセット）を削除する。"""
    ds = store.get(ownerId, datasetId)
    store.delete(ds)
    return {"message": "File deleted successfully"}


@app.options("/{anyPath:path}")
def preflight(anyPath: str):
    """目的: CORSプリフライト。本文なしで返す。"""
    return Response(status_code=200)
