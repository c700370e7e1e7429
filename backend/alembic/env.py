import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from datarest.models import Base


# Alembic Config object, which provides access to the values within the .ini file.
config = context.config

# アプリ側のロガー（datarest.*）を無効化しないように読み込む
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# target_metadata is required for 'autogenerate' support.
targetMetadata = Base.metadata


def getDatabaseUrl() -> str:
    """目的: DB接続URLを取得する（-x 指定の sqlalchemy.url を優先し、なければ DATABASE_URL）。"""
    url = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


def isSqlite(url: str) -> bool:
    return url.startswith("sqlite")


def runMigrationsOffline() -> None:
    """目的: DBへ接続せずに、SQLを出力する形でマイグレーションを実行する。"""
    url = getDatabaseUrl()
    context.configure(
        url=url,
        target_metadata=targetMetadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=isSqlite(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def runMigrationsOnline() -> None:
    """目的: DBへ接続して、オンラインでマイグレーションを適用する（SQLiteはbatchモード）。"""
    url = getDatabaseUrl()
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = url

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=targetMetadata,
            compare_type=True,
            render_as_batch=isSqlite(url),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    runMigrationsOffline()
else:
    runMigrationsOnline()
