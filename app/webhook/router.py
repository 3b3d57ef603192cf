"""
Webhook 接入层（三个平台共用一个入口）。

职责：
- 读取原始 body，校验 HMAC 签名（GitHub `X-Hub-Signature-256` / Gitea `X-Gitea-Signature`，配置了 secret 才校验）
- 解析 JSON（兼容 GitHub 的 form 投递：`payload=<json>`）
- 交给 orchestrator；领域异常统一映射为 HTTP 状态码
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs

from fastapi import APIRouter
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi import Request
from fastapi.responses import JSONResponse

from app.errors import NoProviderAvailableError, TokenVerificationError, TransportError
from app.review.orchestrator import WebhookOrchestrator
from app.scm.models import Platform
from app.webhook.schemas import WebhookResult

logger = logging.getLogger(__name__)


def _hmac_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signatures(body: bytes, headers: Mapping[str, str], signing_secrets: Mapping[Platform, str]) -> None:
    """
    配置了对应平台 secret 时校验 HMAC 签名。

    - Gitea 同时带两种签名头，只校验它自己的 `X-Gitea-Signature`
    - 带平台 event 头但缺签名头的请求视为未签名，直接拒绝
    """
    gitea_signature = headers.get("x-gitea-signature")
    if gitea_signature is not None or "x-gitea-event" in headers:
        secret = signing_secrets.get(Platform.GITEA)
        if not secret:
            return
        if gitea_signature is None:
            raise TokenVerificationError("Missing Gitea webhook signature")
        if not hmac.compare_digest(_hmac_hex(secret, body), gitea_signature):
            raise TokenVerificationError("Invalid Gitea webhook signature")
        return

    github_signature = headers.get("x-hub-signature-256")
    if github_signature is not None or "x-github-event" in headers:
        secret = signing_secrets.get(Platform.GITHUB)
        if not secret:
            return
        if github_signature is None:
            raise TokenVerificationError("Missing GitHub webhook signature")
        if not hmac.compare_digest(f"sha256={_hmac_hex(secret, body)}", github_signature):
            raise TokenVerificationError("Invalid GitHub webhook signature")


def decode_payload(body: bytes, content_type: str) -> Any:
    try:
        if content_type.startswith("application/x-www-form-urlencoded"):
            form = parse_qs(body.decode("utf-8"))
            if "payload" not in form:
                raise HTTPException(status_code=400, detail="Missing form field: payload")
            return json.loads(form["payload"][0])
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc


def build_webhook_router(orchestrator: WebhookOrchestrator, signing_secrets: Mapping[Platform, str]) -> APIRouter:
    router = APIRouter(prefix="/webhook")

    @router.post("/review", response_model=WebhookResult)
    async def review_webhook(request: Request) -> WebhookResult:
        body = await request.body()
        headers = {key.lower(): value for key, value in request.headers.items()}
        verify_signatures(body, headers, signing_secrets)
        payload = decode_payload(body, headers.get("content-type", ""))
        return await orchestrator.process_webhook(payload, headers)

    @router.post("/test", response_model=WebhookResult)
    async def test_webhook(request: Request) -> WebhookResult:
        body = await request.body()
        payload = decode_payload(body, request.headers.get("content-type", ""))
        return await orchestrator.test_connection(payload)

    return router


def install_exception_handlers(app: FastAPI) -> None:
    def _handler(status_code: int):
        async def handle(request: Request, exc: Exception) -> JSONResponse:
            logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
            return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})

        return handle

    app.add_exception_handler(TokenVerificationError, _handler(401))
    app.add_exception_handler(TransportError, _handler(502))
    app.add_exception_handler(NoProviderAvailableError, _handler(503))
