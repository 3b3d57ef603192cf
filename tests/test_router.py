from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import NoProviderAvailableError, TokenVerificationError, TransportError
from app.scm.models import Platform
from app.webhook.router import build_webhook_router, install_exception_handlers
from app.webhook.schemas import WebhookResult

SECRETS = {Platform.GITHUB: "gh-secret", Platform.GITEA: "gitea-secret"}


class FakeOrchestrator:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.received: list[tuple[Any, Mapping[str, str]]] = []

    async def process_webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookResult:
        if self.error is not None:
            raise self.error
        self.received.append((payload, headers))
        return WebhookResult(success=True, message="Review completed", score=80)

    async def test_connection(self, payload: Any) -> WebhookResult:
        return WebhookResult(success=True, message=f"parsed {sorted(payload)}")


def _client(orchestrator: FakeOrchestrator, secrets: Mapping[Platform, str] = SECRETS) -> TestClient:
    app = FastAPI()
    app.include_router(build_webhook_router(orchestrator, secrets))
    install_exception_handlers(app)
    return TestClient(app)


def _hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_json_body_is_forwarded_with_lowercase_headers() -> None:
    orchestrator = FakeOrchestrator()
    body = json.dumps({"object_kind": "push"}).encode()

    response = _client(orchestrator).post(
        "/webhook/review", content=body, headers={"Content-Type": "application/json", "X-Gitlab-Event": "Push Hook"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Review completed", "score": 80}
    payload, headers = orchestrator.received[0]
    assert payload == {"object_kind": "push"}
    assert headers["x-gitlab-event"] == "Push Hook"


def test_invalid_json_is_400() -> None:
    response = _client(FakeOrchestrator()).post(
        "/webhook/review", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


def test_form_encoded_github_payload() -> None:
    orchestrator = FakeOrchestrator()
    body = urlencode({"payload": json.dumps({"zen": "hi"})}).encode()

    response = _client(orchestrator).post(
        "/webhook/review",
        content=body,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Hub-Signature-256": f"sha256={_hex('gh-secret', body)}",
        },
    )

    assert response.status_code == 200
    assert orchestrator.received[0][0] == {"zen": "hi"}


def test_bad_github_signature_is_401() -> None:
    orchestrator = FakeOrchestrator()
    response = _client(orchestrator).post(
        "/webhook/review", content=b"{}", headers={"X-Hub-Signature-256": "sha256=deadbeef"}
    )
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert orchestrator.received == []


def test_gitea_signature_takes_precedence() -> None:
    body = b'{"action": "opened"}'
    headers = {
        "Content-Type": "application/json",
        "X-Gitea-Signature": _hex("gitea-secret", body),
        "X-Hub-Signature-256": "sha256=not-checked",
    }
    assert _client(FakeOrchestrator()).post("/webhook/review", content=body, headers=headers).status_code == 200

    headers["X-Gitea-Signature"] = _hex("wrong", body)
    assert _client(FakeOrchestrator()).post("/webhook/review", content=body, headers=headers).status_code == 401


def test_unsigned_delivery_rejected_only_when_secret_configured() -> None:
    for event_header in ("X-GitHub-Event", "X-Gitea-Event"):
        response = _client(FakeOrchestrator()).post("/webhook/review", content=b"{}", headers={event_header: "push"})
        assert response.status_code == 401
        assert "Missing" in response.json()["message"]

    orchestrator = FakeOrchestrator()
    response = _client(orchestrator, secrets={}).post("/webhook/review", content=b"{}", headers={"X-GitHub-Event": "push"})
    assert response.status_code == 200
    assert len(orchestrator.received) == 1


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (TokenVerificationError("bad token"), 401),
        (TransportError("upstream down", status_code=500), 502),
        (NoProviderAvailableError("No available LLM config found"), 503),
    ],
)
def test_domain_errors_map_to_status(error: Exception, status: int) -> None:
    response = _client(FakeOrchestrator(error)).post("/webhook/review", content=b"{}")
    assert response.status_code == status
    assert response.json() == {"success": False, "message": str(error)}


def test_connection_endpoint() -> None:
    response = _client(FakeOrchestrator()).post("/webhook/test", json={"object_kind": "push", "ref": "x"})
    assert response.status_code == 200
    assert response.json()["message"] == "parsed ['object_kind', 'ref']"
