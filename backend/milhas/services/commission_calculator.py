"""
单笔销售佣金计算

计算顺序:
    1. 积分价值 pv：有预计算值则用，否则 max(0, round(milheiro * points / 1000) - fee)
    2. 不含税费的每千点价 = round(pv / (points / 1000))，只用于奖金档比较
    3. 佣金1（C1）：有预计算值则用，否则 round(pv * 1%)
    4. 佣金2（C2）：有预计算值则用；否则目标价 = 销售目标价 → 采购批次目标价 → 无；
       不含税费的每千点价 > 目标价时，
       C2 = round(30% * round(points / 1000 * (每千点价 - 目标价)))
    5. 利润 = pv - round(points / 1000 * 成本价)，成本价 = 采购批次成本 → 计划默认成本

除利润外所有数值非负；利润可以为负（此时不进入利润池）。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from milhas.exceptions import ValidationError
from milhas.utils.money import apply_bps, round_div

DEFAULT_PROGRAM_COSTS = {
    "LATAM": 2000,
    "SMILES": 1800,
    "LIVELO": 2200,
    "ESFERA": 1700,
}


@dataclass(frozen=True)
class SaleInput:
    """日结算读取到的一笔销售

    预计算字段为 None 表示需要推导（数据库中存 0 的情况在仓储层已转换）。
    """
    sale_id: int
    date: datetime
    program: str
    points: int
    milheiro_cents: int
    fee_cents: int
    seller_id: Optional[int]
    owner_id: int
    points_value_cents: Optional[int] = None
    commission_cents: Optional[int] = None
    bonus_cents: Optional[int] = None
    target_milheiro_cents: Optional[int] = None
    purchase_cost_milheiro_cents: Optional[int] = None
    purchase_target_milheiro_cents: Optional[int] = None


@dataclass(frozen=True)
class SaleCommission:
    """单笔销售的计算结果"""
    points_value_cents: int
    milheiro_without_fee_cents: int
    commission_cents: int  # C1
    bonus_cents: int  # C2
    cost_cents: int
    profit_cents: int

    @property
    def pool_cents(self) -> int:
        """扣除佣金后进入分成的利润池，负数按 0 计"""
        return max(0, self.profit_cents - self.commission_cents - self.bonus_cents)


def points_value_cents(points: int, milheiro_cents: int, fee_cents: int) -> int:
    """积分价值（扣除登机税）"""
    if points <= 0:
        return 0
    return max(0, round_div(milheiro_cents * points, 1000) - fee_cents)


def milheiro_without_fee_cents(pv_cents: int, points: int) -> int:
    """不含税费的每千点价"""
    if points <= 0:
        return 0
    return round_div(pv_cents * 1000, points)


def bonus_cents(points: int, milheiro_cents: int, target_milheiro_cents: Optional[int], share_bps: int = 3000) -> int:
    """
    佣金2：超出目标价部分的 30%

    等于目标价时没有奖金（严格大于才计）。
    """
    if not target_milheiro_cents:
        return 0
    diff = milheiro_cents - target_milheiro_cents
    if diff <= 0:
        return 0
    diff_total = round_div(points * diff, 1000)
    return apply_bps(diff_total, share_bps)


class SaleCommissionCalculator:
    """单笔销售佣金计算器"""

    def __init__(
        self,
        program_costs: Optional[Dict[str, int]] = None,
        flat_commission_bps: int = 100,
        bonus_share_bps: int = 3000,
    ):
        self.program_costs = dict(DEFAULT_PROGRAM_COSTS)
        if program_costs:
            self.program_costs.update(program_costs)
        self.flat_commission_bps = flat_commission_bps
        self.bonus_share_bps = bonus_share_bps

    def cost_milheiro_for(self, sale: SaleInput) -> int:
        if sale.purchase_cost_milheiro_cents:
            return sale.purchase_cost_milheiro_cents
        try:
            return self.program_costs[sale.program]
        except KeyError:
            raise ValidationError(f"未知的积分计划: {sale.program}", field="program")

    def compute(self, sale: SaleInput) -> SaleCommission:
        self._validate(sale)

        pv = sale.points_value_cents
        if pv is None:
            pv = points_value_cents(sale.points, sale.milheiro_cents, sale.fee_cents)

        milheiro_no_fee = milheiro_without_fee_cents(pv, sale.points)

        commission = sale.commission_cents
        if commission is None:
            commission = apply_bps(pv, self.flat_commission_bps)

        bonus = sale.bonus_cents
        if bonus is None:
            target = sale.target_milheiro_cents or sale.purchase_target_milheiro_cents
            bonus = bonus_cents(sale.points, milheiro_no_fee, target, self.bonus_share_bps)

        cost = round_div(sale.points * self.cost_milheiro_for(sale), 1000)

        return SaleCommission(
            points_value_cents=pv,
            milheiro_without_fee_cents=milheiro_no_fee,
            commission_cents=commission,
            bonus_cents=bonus,
            cost_cents=cost,
            profit_cents=pv - cost,
        )

    @staticmethod
    def _validate(sale: SaleInput) -> None:
        fields = {
            "points": sale.points,
            "milheiro_cents": sale.milheiro_cents,
            "fee_cents": sale.fee_cents,
            "points_value_cents": sale.points_value_cents,
            "commission_cents": sale.commission_cents,
            "bonus_cents": sale.bonus_cents,
            "target_milheiro_cents": sale.target_milheiro_cents,
            "purchase_cost_milheiro_cents": sale.purchase_cost_milheiro_cents,
            "purchase_target_milheiro_cents": sale.purchase_target_milheiro_cents,
        }
        for name, value in fields.items():
            if value is not None and value < 0:
                raise ValidationError(f"销售 {sale.sale_id} 的 {name} 不能为负数: {value}", field=name)
