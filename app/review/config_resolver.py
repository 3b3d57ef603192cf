from __future__ import annotations

import logging

from app.review.models import DEFAULT_REVIEW_CONFIG, ReviewConfig
from app.storage.base import ConfigStore
from app.storage.models import Project

logger = logging.getLogger(__name__)


async def resolve_review_config(store: ConfigStore, project: Project | None) -> ReviewConfig:
    """项目绑定的配置 -> 存储里的 professional 默认配置 -> 内置默认配置。"""
    if project is not None and project.review_config_id:
        config = await store.get_review_config_by_id(project.review_config_id)
        if config is not None:
            return config
        logger.warning(f"Review config {project.review_config_id} of project {project.name} not found")

    config = await store.get_default_review_config()
    if config is not None:
        return config

    logger.info("No review config in store, using built-in professional config")
    return DEFAULT_REVIEW_CONFIG
