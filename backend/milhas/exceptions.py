"""
结算引擎异常
"""
from typing import Optional


class PayoutError(Exception):
    """结算引擎异常基类"""


class ValidationError(PayoutError):
    """输入不合法，写入前即被拒绝，调用方修正后可重试"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(PayoutError):
    """计算过程中引用的记录不存在，本次运行中止且不提交"""

    def __init__(
        self,
        message: str,
        team: Optional[str] = None,
        date: Optional[str] = None,
        sale_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = {"team": team, "date": date, "sale_id": sale_id}

    def __str__(self) -> str:
        ctx = ", ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return f"{self.message} ({ctx})" if ctx else self.message


class ConsistencyWarning(UserWarning):
    """历史配置不一致（空方案 / bps 合计不为 10000），已回退为默认方案"""
