import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.environ["DATABASE_URL"]


def buildEngineOptions(url: str) -> dict:
    """目的: 接続先に応じたエンジン設定を返す（SQLiteはテスト/ローカル用）。"""
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}

    options: dict = {"connect_args": {"check_same_thread": False}}
    # インメモリDBは接続ごとに別DBになるため、1接続を共有する
    if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
        options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **buildEngineOptions(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

class Base(DeclarativeBase):
    pass
