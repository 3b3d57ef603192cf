"""
Postgres 存储实现（psycopg，同步驱动放到线程里跑）。

表：
- 只读：projects / review_configs / git_configs / llm_configs（由管理端维护）
- 读写：review_logs（由本服务 `ensure_schema` 创建，带幂等唯一索引）
"""

from __future__ import annotations

import logging
from functools import partial

import anyio
import psycopg
from psycopg.types.json import Jsonb

from app.review.models import ReviewConfig
from app.scm.models import Platform
from app.storage.models import GitCredential
from app.storage.models import Project
from app.storage.models import ProviderConfig
from app.storage.models import ReviewLogRecord
from app.storage.models import find_matching_project
from app.storage.models import select_default_provider

logger = logging.getLogger(__name__)


class PgStorageClient:
    """Postgres 连接器。"""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def connect(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn)


def ensure_schema(client: PgStorageClient) -> None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS review_logs (
                    id BIGSERIAL PRIMARY KEY,
                    review_type TEXT NOT NULL,
                    project_id TEXT,
                    project_name TEXT NOT NULL,
                    author TEXT NOT NULL DEFAULT '',
                    source_branch TEXT,
                    target_branch TEXT,
                    branch TEXT,
                    commit_messages TEXT NOT NULL DEFAULT '',
                    score INTEGER NOT NULL,
                    url TEXT,
                    review_result JSONB NOT NULL,
                    additions INTEGER NOT NULL DEFAULT 0,
                    deletions INTEGER NOT NULL DEFAULT 0,
                    last_commit_id TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_review_logs_commit
                ON review_logs (review_type, project_name, last_commit_id)
                """
            )
        conn.commit()
    logger.info("review_logs schema ensured")


def _row_to_project(row: tuple) -> Project:
    return Project(
        id=str(row[0]),
        name=row[1],
        platform=Platform(row[2]),
        repository_url=row[3] or "",
        webhook_url=row[4],
        webhook_type=row[5] or None,
        webhook_secret=row[6],
        is_enabled=row[7],
        auto_review_enabled=row[8],
        review_config_id=str(row[9]) if row[9] is not None else None,
    )


def _row_to_review_config(row: tuple) -> ReviewConfig:
    return ReviewConfig(id=str(row[0]), style=row[1], system_prompt=row[2], max_tokens=row[3])


def load_projects(client: PgStorageClient, identifier: str, platform: Platform) -> list[Project]:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, platform, repository_url, webhook_url, webhook_type, webhook_secret,
                       is_enabled, auto_review_enabled, review_config_id
                FROM projects
                WHERE platform = %s OR repository_url = %s
                """,
                (platform.value, identifier),
            )
            rows = cur.fetchall()
    return [_row_to_project(row) for row in rows]


def get_review_config(client: PgStorageClient, config_id: str) -> ReviewConfig | None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, review_style, prompt, max_tokens FROM review_configs WHERE id::text = %s",
                (config_id,),
            )
            row = cur.fetchone()
    return _row_to_review_config(row) if row is not None else None


def get_review_config_by_style(client: PgStorageClient, style: str) -> ReviewConfig | None:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, review_style, prompt, max_tokens FROM review_configs WHERE review_style = %s LIMIT 1",
                (style,),
            )
            row = cur.fetchone()
    return _row_to_review_config(row) if row is not None else None


def list_git_credentials(client: PgStorageClient) -> list[GitCredential]:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT provider, url, access_token, name FROM git_configs ORDER BY created_at")
            rows = cur.fetchall()
    return [GitCredential(provider=Platform(row[0]), url=row[1], token=row[2], name=row[3] or "") for row in rows]


def list_provider_configs(client: PgStorageClient) -> list[ProviderConfig]:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, provider, name, api_key, base_url, model, max_tokens, temperature,
                       is_default, is_enabled, created_at
                FROM llm_configs
                WHERE is_enabled = true
                ORDER BY created_at
                """
            )
            rows = cur.fetchall()
    return [
        ProviderConfig(
            id=str(row[0]),
            provider=row[1],
            name=row[2] or "",
            api_key=row[3] or "",
            base_url=row[4],
            model=row[5],
            max_tokens=row[6],
            temperature=float(row[7]) if row[7] is not None else 0.7,
            is_default=row[8],
            is_enabled=row[9],
            created_at=row[10],
        )
        for row in rows
    ]


def insert_review_log(client: PgStorageClient, record: ReviewLogRecord) -> bool:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO review_logs (
                    review_type, project_id, project_name, author, source_branch, target_branch, branch,
                    commit_messages, score, url, review_result, additions, deletions, last_commit_id, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (review_type, project_name, last_commit_id) DO NOTHING
                """,
                (
                    record.review_type,
                    record.project_id,
                    record.project_name,
                    record.author,
                    record.source_branch,
                    record.target_branch,
                    record.branch,
                    record.commit_messages,
                    record.score,
                    record.url,
                    Jsonb(record.review_result),
                    record.additions,
                    record.deletions,
                    record.last_commit_id,
                    record.created_at,
                ),
            )
            inserted = cur.rowcount == 1
        conn.commit()
    return inserted


def review_log_exists(client: PgStorageClient, project_name: str, commit_id: str, review_type: str) -> bool:
    with client.connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM review_logs
                WHERE review_type = %s AND project_name = %s AND last_commit_id = %s
                LIMIT 1
                """,
                (review_type, project_name, commit_id),
            )
            row = cur.fetchone()
    return row is not None


class PgConfigStore:
    def __init__(self, client: PgStorageClient) -> None:
        self._client = client

    async def find_project_by_repo_identifier(self, identifier: str, platform: Platform) -> Project | None:
        projects = await anyio.to_thread.run_sync(partial(load_projects, self._client, identifier, platform))
        return find_matching_project(projects, identifier, platform)

    async def get_review_config_by_id(self, config_id: str) -> ReviewConfig | None:
        return await anyio.to_thread.run_sync(partial(get_review_config, self._client, config_id))

    async def get_default_review_config(self) -> ReviewConfig | None:
        return await anyio.to_thread.run_sync(partial(get_review_config_by_style, self._client, "professional"))

    async def list_git_credentials(self) -> list[GitCredential]:
        return await anyio.to_thread.run_sync(partial(list_git_credentials, self._client))

    async def get_default_llm_provider(self) -> ProviderConfig:
        configs = await anyio.to_thread.run_sync(partial(list_provider_configs, self._client))
        return select_default_provider(configs)


class PgReviewLogSink:
    def __init__(self, client: PgStorageClient) -> None:
        self._client = client

    async def append_review_log(self, record: ReviewLogRecord) -> bool:
        inserted = await anyio.to_thread.run_sync(partial(insert_review_log, self._client, record))
        if not inserted:
            logger.info(
                f"Review log already exists: {record.review_type} {record.project_name}@{record.last_commit_id[:8]}"
            )
        return inserted

    async def exists_review_log(self, project_name: str, commit_id: str, review_type: str) -> bool:
        return await anyio.to_thread.run_sync(
            partial(review_log_exists, self._client, project_name, commit_id, review_type)
        )
