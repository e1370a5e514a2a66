"""
VIP 分成 - Schemas
"""
from datetime import date
from typing import List
from pydantic import BaseModel


class VipEmployeeSummary(BaseModel):
    employee_id: int
    earnings_cents: int = 0  # 本月应得
    own_paid_cents: int = 0  # 本人负责的付款总额


class VipTotals(BaseModel):
    total_paid_cents: int = 0
    total_tax_cents: int = 0
    total_net_cents: int = 0
    total_owner_share_cents: int = 0
    total_others_share_cents: int = 0


class VipDistributionSummary(BaseModel):
    team: str
    month_ref: str  # YYYY-MM
    owner_percent_bps: int
    others_percent_bps: int
    tax_percent_bps: int
    payout_dates: List[date]
    employees: List[VipEmployeeSummary]
    totals: VipTotals
