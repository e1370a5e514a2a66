"""
销售仓储
读取日结算所需的销售数据，并在此处把“存 0”统一转换为 None
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from milhas.exceptions import NotFoundError
from milhas.models.program_settings import ProgramSettings
from milhas.models.sale import Sale, PaymentStatus
from milhas.services.commission_calculator import SaleInput


def _optional_cents(value: Optional[int]) -> Optional[int]:
    """历史数据中 0 表示“未预先计算”"""
    if value is None or value == 0:
        return None
    return int(value)


class SaleRepository:
    """销售仓储"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_window(self, team: str, start: datetime, end: datetime) -> List[SaleInput]:
        """
        获取某团队在 [start, end) 内未取消的销售

        出让人或其 owner 缺失视为数据损坏，抛出 NotFoundError 中止本次运行。
        """
        rows = (
            self.db.query(Sale)
            .options(joinedload(Sale.cedente), joinedload(Sale.purchase))
            .filter(
                Sale.team == team,
                Sale.date >= start,
                Sale.date < end,
                Sale.payment_status != PaymentStatus.CANCELED,
            )
            .order_by(Sale.date, Sale.id)
            .all()
        )
        return [self._to_input(team, row) for row in rows]

    def program_costs(self, defaults: Dict[str, int]) -> Dict[str, int]:
        """各积分计划的每千点成本（设置表覆盖默认值）"""
        costs = dict(defaults)
        row = self.db.query(ProgramSettings).order_by(ProgramSettings.id).first()
        if not row:
            return costs
        overrides = {
            "LATAM": row.latam_rate_cents,
            "SMILES": row.smiles_rate_cents,
            "LIVELO": row.livelo_rate_cents,
            "ESFERA": row.esfera_rate_cents,
        }
        for program, value in overrides.items():
            if value is not None:
                costs[program] = int(value)
        return costs

    @staticmethod
    def _to_input(team: str, row: Sale) -> SaleInput:
        if row.cedente_id is None or row.cedente is None:
            raise NotFoundError(
                "销售引用的出让人不存在",
                team=team, date=row.date.isoformat(), sale_id=row.id,
            )
        if row.cedente.owner_id is None:
            raise NotFoundError(
                f"出让人 {row.cedente_id} 没有归属员工",
                team=team, date=row.date.isoformat(), sale_id=row.id,
            )

        purchase = row.purchase
        return SaleInput(
            sale_id=row.id,
            date=row.date,
            program=row.program.value if hasattr(row.program, "value") else str(row.program),
            points=int(row.points or 0),
            milheiro_cents=int(row.milheiro_cents or 0),
            fee_cents=int(row.embarque_fee_cents or 0),
            seller_id=row.seller_id,
            owner_id=row.cedente.owner_id,
            points_value_cents=_optional_cents(row.points_value_cents),
            commission_cents=_optional_cents(row.commission_cents),
            bonus_cents=_optional_cents(row.bonus_cents),
            target_milheiro_cents=_optional_cents(row.target_milheiro_cents),
            purchase_cost_milheiro_cents=_optional_cents(purchase.cost_milheiro_cents) if purchase else None,
            purchase_target_milheiro_cents=_optional_cents(purchase.target_milheiro_cents) if purchase else None,
        )
