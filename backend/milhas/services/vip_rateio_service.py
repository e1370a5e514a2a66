"""
VIP 群组月度分成

每笔付款:
    税 = round(金额 * tax_bps / 10000)，净额 = 金额 - 税
    其他员工部分 = round(净额 * others_bps / 10000)，负责人部分 = 净额 - 其他员工部分
负责人部分记给付款的负责员工；其他员工部分在除负责人外的全部员工中
按 ID 升序平均分配，余数从第一位起每人 1 分（配置了权重时按权重分配）。
没有其他员工时，其他员工部分也归负责人。

守恒：Σ金额 == Σ(税 + 净额)，Σ净额 == Σ(负责人部分 + 其他员工部分)，
Σ员工应得 == Σ净额。
"""
import calendar
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from milhas.config import settings
from milhas.repositories.vip_repository import VipRepository
from milhas.schemas.vip import VipDistributionSummary, VipEmployeeSummary, VipTotals
from milhas.utils.money import BPS_TOTAL, apply_bps, split_by_weights, split_evenly
from milhas.utils.timezone import month_bounds

logger = logging.getLogger(__name__)

DEFAULT_OWNER_BPS = 7000
DEFAULT_OTHERS_BPS = 3000
DEFAULT_TAX_BPS = 1000
DEFAULT_PAYOUT_DAYS = "1"


def clamp_int(value, low: int, high: int) -> int:
    """转整数并限制范围，无法解析时返回 low"""
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return low
    return min(high, max(low, number))


def parse_payout_days(source: Optional[str]) -> List[int]:
    """
    解析发放日

    支持 , 空格 ; | / 分隔；每个值限制在 1..31，去重排序，为空时返回 [1]。
    """
    raw = [part for part in re.split(r"[,\s;|/]+", str(source or DEFAULT_PAYOUT_DAYS)) if part]
    days = set()
    for part in raw:
        try:
            number = float(part)
        except ValueError:
            continue
        if not math.isfinite(number):
            continue
        days.add(clamp_int(number, 1, 31))
    return sorted(days) or [1]


def payout_days_to_csv(days: Iterable[int]) -> str:
    normalized = sorted({clamp_int(d, 1, 31) for d in days})
    return ",".join(str(d) for d in normalized) if normalized else DEFAULT_PAYOUT_DAYS


@dataclass(frozen=True)
class VipSetting:
    owner_bps: int = DEFAULT_OWNER_BPS
    others_bps: int = DEFAULT_OTHERS_BPS
    tax_bps: int = DEFAULT_TAX_BPS
    payout_days: Tuple[int, ...] = (1,)

    @classmethod
    def from_values(
        cls,
        owner_bps=None,
        others_bps=None,
        tax_bps=None,
        payout_days_csv: Optional[str] = None,
        defaults: Optional["VipSetting"] = None,
    ) -> "VipSetting":
        """缺失的值用默认值，bps 限制在 0..10000"""
        defaults = defaults or cls()
        return cls(
            owner_bps=clamp_int(defaults.owner_bps if owner_bps is None else owner_bps, 0, BPS_TOTAL),
            others_bps=clamp_int(defaults.others_bps if others_bps is None else others_bps, 0, BPS_TOTAL),
            tax_bps=clamp_int(defaults.tax_bps if tax_bps is None else tax_bps, 0, BPS_TOTAL),
            payout_days=tuple(parse_payout_days(
                payout_days_csv if payout_days_csv is not None else payout_days_to_csv(defaults.payout_days)
            )),
        )


@dataclass(frozen=True)
class VipPaymentInput:
    amount_cents: int
    responsible_employee_id: Optional[int]


@dataclass
class VipDistribution:
    earnings_by_employee: Dict[int, int] = field(default_factory=dict)
    own_paid_by_employee: Dict[int, int] = field(default_factory=dict)
    total_paid_cents: int = 0
    total_tax_cents: int = 0
    total_net_cents: int = 0
    total_owner_share_cents: int = 0
    total_others_share_cents: int = 0


def distribute(
    payments: Iterable[VipPaymentInput],
    employee_ids: Iterable[int],
    setting: VipSetting,
    weights: Optional[Mapping[int, int]] = None,
) -> VipDistribution:
    """计算 VIP 分成（纯计算，不修改付款）"""
    result = VipDistribution()
    for employee_id in sorted(set(employee_ids)):
        result.earnings_by_employee[employee_id] = 0
        result.own_paid_by_employee[employee_id] = 0

    for payment in payments:
        amount = max(0, int(payment.amount_cents or 0))
        responsible = payment.responsible_employee_id
        if responsible is None or amount <= 0:
            continue

        if responsible not in result.earnings_by_employee:
            result.earnings_by_employee[responsible] = 0
            result.own_paid_by_employee[responsible] = 0

        tax = apply_bps(amount, setting.tax_bps)
        net = max(0, amount - tax)
        others_share = apply_bps(net, setting.others_bps)
        owner_share = net - others_share

        result.total_paid_cents += amount
        result.total_tax_cents += tax
        result.total_net_cents += net
        result.total_owner_share_cents += owner_share
        result.total_others_share_cents += others_share

        result.own_paid_by_employee[responsible] += amount
        result.earnings_by_employee[responsible] += owner_share

        others = [e for e in result.earnings_by_employee if e != responsible]
        if not others:
            result.earnings_by_employee[responsible] += others_share
            continue

        if weights:
            split = split_by_weights(others_share, others, weights)
        else:
            split = split_evenly(others_share, others)
        for employee_id, cents in split.items():
            result.earnings_by_employee[employee_id] += cents

    return result


def resolve_month_ref(value: Optional[str], now: Optional[datetime] = None) -> Tuple[int, int]:
    """解析 YYYY-MM；无效时使用当前月份"""
    now = now or datetime.now(timezone.utc)
    year, month = now.year, now.month
    match = re.match(r"^(\d{4})-(\d{2})$", str(value or "").strip())
    if match:
        y, m = int(match.group(1)), int(match.group(2))
        if 2000 <= y <= 2100:
            year = y
        if 1 <= m <= 12:
            month = m
    return year, month


def payout_dates_for_month(year: int, month: int, payout_days: Iterable[int]) -> List[date]:
    """参考月的发放日期（在下一个月，超过当月天数时取月末）"""
    pay_year, pay_month = (year + 1, 1) if month == 12 else (year, month + 1)
    last_day = calendar.monthrange(pay_year, pay_month)[1]
    return [date(pay_year, pay_month, min(clamp_int(d, 1, 31), last_day)) for d in payout_days]


class VipMonthlyDistributor:
    """VIP 月度分成"""

    def __init__(self, db: Session, repository: Optional[VipRepository] = None, tz_name: Optional[str] = None):
        self.db = db
        self.repository = repository or VipRepository(db)
        self.tz_name = tz_name or settings.BUSINESS_TIMEZONE
        self.defaults = VipSetting.from_values(
            settings.VIP_OWNER_BPS,
            settings.VIP_OTHERS_BPS,
            settings.VIP_TAX_BPS,
            settings.VIP_PAYOUT_DAYS,
        )

    def load_setting(self, team: str) -> VipSetting:
        row = self.repository.get_setting(team)
        if row is None:
            return self.defaults
        return VipSetting.from_values(
            row.owner_percent_bps,
            row.others_percent_bps,
            row.tax_percent_bps,
            row.payout_days_csv,
            defaults=self.defaults,
        )

    def run_month(self, team: str, month_ref: Optional[str] = None) -> VipDistributionSummary:
        year, month = resolve_month_ref(month_ref)
        start, end = month_bounds(year, month, self.tz_name)

        setting = self.load_setting(team)
        employee_ids = self.repository.list_employee_ids(team)
        weights = self.repository.get_weights(team)
        payments = [
            VipPaymentInput(amount_cents=p.amount_cents, responsible_employee_id=p.responsible_employee_id)
            for p in self.repository.list_payments(team, start, end)
        ]

        result = distribute(payments, employee_ids, setting, weights=weights or None)
        month_label = f"{year:04d}-{month:02d}"

        logger.info(
            f"VIP 分成完成: team={team} month={month_label} payments={len(payments)} "
            f"net={result.total_net_cents}",
            extra={"team": team, "month_ref": month_label, "payments": len(payments)},
        )

        return VipDistributionSummary(
            team=team,
            month_ref=month_label,
            owner_percent_bps=setting.owner_bps,
            others_percent_bps=setting.others_bps,
            tax_percent_bps=setting.tax_bps,
            payout_dates=payout_dates_for_month(year, month, setting.payout_days),
            employees=[
                VipEmployeeSummary(
                    employee_id=employee_id,
                    earnings_cents=result.earnings_by_employee[employee_id],
                    own_paid_cents=result.own_paid_by_employee.get(employee_id, 0),
                )
                for employee_id in sorted(result.earnings_by_employee)
            ],
            totals=VipTotals(
                total_paid_cents=result.total_paid_cents,
                total_tax_cents=result.total_tax_cents,
                total_net_cents=result.total_net_cents,
                total_owner_share_cents=result.total_owner_share_cents,
                total_others_share_cents=result.total_others_share_cents,
            ),
        )
