"""
平台 API 调用的重试（指数退避 + 抖动）。

说明：
- 只重试 `TransportError`（网络/非 2xx），其它异常原样抛出
- 每次失败都会带上 attempt 序号打日志；最后一次失败的异常向上抛
- `multiplier=1.0` 且 `jitter=False` 即为固定间隔重试
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import anyio
from pydantic import BaseModel, Field

from app.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=10.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=60.0, ge=0)
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """第 `attempt` 次失败后、下一次尝试前的等待秒数（attempt 从 1 开始）。"""
        delay = min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            # equal jitter：一半固定，一半随机
            return delay / 2 + random.uniform(0, delay / 2)
        return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    label: str = "operation",
) -> T:
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await fn()
        except TransportError as exc:
            if attempt >= policy.max_attempts:
                logger.error(f"{label} failed after {attempt} attempt(s): {exc}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt}/{policy.max_attempts}): {exc}. Retrying in {delay:.1f}s"
            )
            await anyio.sleep(delay)
            attempt += 1
