"""
Gitea adapter。

Gitea 的 API 与 webhook 基本与 GitHub 同构，差异只有：
- API 前缀 `{base_url}/api/v1`，鉴权头 `Authorization: token <token>`
- 分页参数是 `limit`
- PR 同步 action 叫 `synchronized`
- 分支保护规则在 `/branch_protections`（规则名可以是通配）
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel

from app.github.client import GitHubAdapter
from app.scm.models import EventAction, Platform, WebhookEvent


class GiteaBranchProtection(BaseModel):
    rule_name: str = ""
    branch_name: str = ""


class GiteaAdapter(GitHubAdapter):
    platform = Platform.GITEA
    display_name = "Gitea"

    page_size: ClassVar[int] = 50
    page_size_param: ClassVar[str] = "limit"
    action_map: ClassVar[dict[str, EventAction]] = {
        "opened": EventAction.OPEN,
        "reopened": EventAction.OPEN,
        "edited": EventAction.UPDATE,
        "synchronized": EventAction.SYNCHRONIZE,
        "closed": EventAction.CLOSE,
    }

    def _api_base_url(self, base_url: str) -> str:
        return f"{base_url}/api/v1"

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"token {access_token}", "Accept": "application/json"}

    def _unwrap_payload(self, payload: Any) -> Any:
        return payload

    async def _list_protected_branch_patterns(self, event: WebhookEvent) -> list[str]:
        data = await self._request("GET", f"{self._repo_path(event)}/branch_protections")
        rules = [GiteaBranchProtection.model_validate(x) for x in data or []]
        return [rule.rule_name or rule.branch_name for rule in rules if rule.rule_name or rule.branch_name]
