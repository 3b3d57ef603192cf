"""
服务内部的异常分类。

约定：
- 出错直接抛这里定义的异常，由 webhook 路由统一映射为 HTTP 状态码
- LLM 输出解析降级不算异常（见 `ReviewOutcome.mode == "fallback"`）
"""

from __future__ import annotations


class UnsupportedEventError(ValueError):
    """payload 形状无法识别（已确认收到，但不处理）。"""


class TransportError(RuntimeError):
    """调用平台 API 失败：连接错误、非 2xx 响应、或 adapter 未初始化。"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoProviderAvailableError(RuntimeError):
    """没有任何可用（enabled）的 LLM provider 配置。"""


class TokenVerificationError(PermissionError):
    """webhook token / 签名校验失败。"""
