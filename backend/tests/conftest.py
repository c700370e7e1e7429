import io
import os
import time

# アプリのimport前に設定する（db.py は import 時に DATABASE_URL を読む）
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTH_PROVIDER", "stub")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from datarest.db import Base, SessionLocal, engine
from datarest.errors import Unauthenticated
from datarest.main import app, getIdentityProvider

TEST_TOKENS = {
    "token-alice": "alice",
    "token-bob": "bob",
}

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}


class FakeIdentityProvider:
    """テスト用: 既知のトークンだけを所有者IDに解決する。"""

    def resolve(self, token: str) -> str:
        owner = TEST_TOKENS.get(token)
        if owner is None:
            raise Unauthenticated("Invalid authentication")
        return owner


def waitForDatabaseReady(timeoutSeconds: int = 30) -> None:
    """目的: テスト開始前にDB接続が可能になるまで待機し、起動レースを避ける。"""
    startTime = time.time()
    lastError: Exception | None = None

    while time.time() - startTime < timeoutSeconds:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return
        except Exception as e:
            lastError = e
            time.sleep(0.5)

    raise RuntimeError(f"Database was not ready within {timeoutSeconds}s: {lastError}")


@pytest.fixture(scope="session", autouse=True)
def ensureDatabaseReady() -> None:
    """目的: テスト全体の開始時に、DBが利用可能になるまで待機する。"""
    waitForDatabaseReady()
    Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def overrideIdentityProvider():
    """目的: 外部の認証基盤の代わりに、固定トークンで所有者を解決する。"""
    app.dependency_overrides[getIdentityProvider] = lambda: FakeIdentityProvider()
    yield
    app.dependency_overrides.pop(getIdentityProvider, None)


@pytest.fixture()
def client() -> TestClient:
    """目的: alice として認証済みの TestClient を提供する。"""
    with TestClient(app, headers=ALICE) as testClient:
        yield testClient


@pytest.fixture()
def anonymousClient() -> TestClient:
    """目的: Authorization ヘッダなしの TestClient を提供する。"""
    with TestClient(app) as testClient:
        yield testClient


@pytest.fixture()
def db():
    """目的: テストから直接DBを確認するためのセッションを提供する。"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def uploadCsv(client):
    """目的: CSVをアップロードし、レスポンスの file 部分を返すヘルパー。"""

    def upload(csvText: str, filename: str = "sample.csv", headers: dict | None = None, **form) -> dict:
        files = {"file": (filename, io.BytesIO(csvText.encode("utf-8")), "text/csv")}
        response = client.post("/files/upload", files=files, data=form or None, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["file"]

    return upload


@pytest.fixture(autouse=True)
def cleanDatabase() -> None:
    """目的: 各テストが独立して再現できるよう、テストごとにDBをクリーンにする。"""
    yield

    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
