"""
员工日结算 - Schemas
"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class PayoutBreakdown(BaseModel):
    flat_commission_cents: int = 0  # 佣金1
    bonus_commission_cents: int = 0  # 佣金2
    pool_share_cents: int = 0  # 利润池分成
    sale_count: int = 0
    tax_bps: int = 800


class PayoutPatch(BaseModel):
    """结算行的部分更新

    只有显式赋值的字段会写入（model_fields_set 即“是否提供”标记），
    未提供的字段保持原值。
    """
    gross_cents: Optional[int] = None
    tax_cents: Optional[int] = None
    fee_cents: Optional[int] = None
    net_cents: Optional[int] = None
    breakdown: Optional[PayoutBreakdown] = None
    paid_at: Optional[datetime] = None
    paid_by_id: Optional[int] = None

    def changes(self) -> dict:
        data = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            data[name] = value.model_dump() if isinstance(value, BaseModel) else value
        return data


class EmployeePayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    team: str
    date: date
    user_id: int
    gross_cents: int
    tax_cents: int
    fee_cents: int
    net_cents: int
    breakdown: PayoutBreakdown
    paid_at: Optional[datetime] = None
    paid_by_id: Optional[int] = None


class PayoutRunResult(BaseModel):
    """一次日结算运行的结果"""
    team: str
    date: date
    sales: int
    users: int
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    frozen: int = 0  # 已发放、未被改动的行


class MonthSummaryRow(BaseModel):
    user_id: int
    username: str
    days: int = 0
    sale_count: int = 0
    flat_commission_cents: int = 0
    bonus_commission_cents: int = 0
    pool_share_cents: int = 0
    gross_cents: int = 0
    tax_cents: int = 0
    fee_cents: int = 0
    net_cents: int = 0


class MonthSummaryResponse(BaseModel):
    team: str
    month: str  # YYYY-MM
    start_date: date
    end_date: date  # 不含
    rows: List[MonthSummaryRow]
    totals: MonthSummaryRow
