"""
审查结果通知（项目级 IM 机器人 webhook）。

渠道：
- dingtalk：加签渠道（timestamp + HMAC-SHA256 签名拼到 URL 上），发 markdown 消息
- feishu：不加签，发 interactive 卡片

约定：通知是尽力而为的，任何发送失败只记日志，不向上抛。
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from app.storage.models import Project

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "AI Code Review Result"


class ReviewNotification(BaseModel):
    project_name: str
    author: str
    score: int
    url: str | None = None
    source_branch: str | None = None
    target_branch: str | None = None
    review_content: str | None = None


def score_emoji(score: int) -> str:
    if score >= 90:
        return "🟢"
    if score >= 70:
        return "🟡"
    return "🔴"


def format_review_content(data: ReviewNotification) -> str:
    emoji = score_emoji(data.score)
    if data.source_branch and data.target_branch:
        branch_info = f"`{data.source_branch}` → `{data.target_branch}`"
    elif data.source_branch:
        branch_info = f"`{data.source_branch}`"
    else:
        branch_info = ""

    content = (
        f"## AI 代码审查结果 {emoji}\n\n"
        f"**项目**: {data.project_name}\n"
        f"**作者**: {data.author}\n"
        f"**得分**: {data.score} 分 {emoji}\n"
        f"**分支**: {branch_info}\n"
        f"**链接**: {data.url or '无'}\n\n"
        "---\n\n"
    )
    if data.review_content:
        content += data.review_content
    content += "\n\n\n---\n*由 AI Code Review System 自动生成*"
    return content


def sign(secret: str, timestamp_ms: int) -> str:
    """钉钉加签：base64(HMAC-SHA256(secret, "{timestamp}\\n{secret}"))，再做 URL 编码。"""
    string_to_sign = f"{timestamp_ms}\n{secret}"
    digest = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return quote(base64.b64encode(digest).decode("ascii"), safe="")


class NotificationDispatcher:
    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http_client = http_client

    async def notify_project(self, project: Project | None, data: ReviewNotification) -> None:
        if project is None:
            return
        await self.send_project_webhook_notification(
            data,
            webhook_type=project.webhook_type,
            webhook_url=project.webhook_url,
            webhook_secret=project.webhook_secret,
        )

    async def send_project_webhook_notification(
        self,
        data: ReviewNotification,
        webhook_type: str | None,
        webhook_url: str | None,
        webhook_secret: str | None = None,
    ) -> None:
        if not webhook_type or not webhook_url:
            return

        content = format_review_content(data)
        try:
            if webhook_type == "dingtalk":
                await self._send_dingtalk(webhook_url, webhook_secret, content)
            elif webhook_type == "feishu":
                await self._send_feishu(webhook_url, content)
            else:
                logger.warning(f"Unsupported notification webhook type: {webhook_type}")
                return
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Failed to send {webhook_type} notification for {data.project_name}: {exc}")
            return
        logger.info(f"{webhook_type} notification sent for {data.project_name}")

    async def _send_dingtalk(self, webhook_url: str, secret: str | None, content: str) -> None:
        url = webhook_url
        if secret:
            timestamp = int(time.time() * 1000)
            separator = "&" if "?" in webhook_url else "?"
            url = f"{webhook_url}{separator}timestamp={timestamp}&sign={sign(secret, timestamp)}"
        payload = {"msgtype": "markdown", "markdown": {"title": NOTIFICATION_TITLE, "text": content}}
        await self._post(url, payload, error_key="errcode")

    async def _send_feishu(self, webhook_url: str, content: str) -> None:
        payload = {
            "msg_type": "interactive",
            "card": {
                "config": {"wide_screen_mode": True},
                "elements": [{"tag": "markdown", "content": content}],
            },
        }
        await self._post(webhook_url, payload, error_key="code")

    async def _post(self, url: str, payload: dict[str, object], error_key: str) -> None:
        response = await self._http_client.post(url, json=payload)
        response.raise_for_status()
        body = response.json() if response.content else {}
        if isinstance(body, dict) and body.get(error_key, 0) != 0:
            raise ValueError(f"channel error {body.get(error_key)}: {body}")
