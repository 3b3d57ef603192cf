from __future__ import annotations

from pydantic import BaseModel


class WebhookResult(BaseModel):
    """webhook 接口的统一响应体。"""

    success: bool
    message: str
    score: int | None = None
