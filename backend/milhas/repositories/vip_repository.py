"""
VIP 分成仓储（只读）
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from milhas.models.user import User
from milhas.models.vip import VipEmployeeShare, VipPayment, VipRateioSetting


class VipRepository:
    """VIP 分成仓储"""

    def __init__(self, db: Session):
        self.db = db

    def get_setting(self, team: str) -> Optional[VipRateioSetting]:
        return self.db.query(VipRateioSetting).filter(VipRateioSetting.team == team).first()

    def list_employee_ids(self, team: str) -> List[int]:
        rows = self.db.query(User.id).filter(User.team == team).order_by(User.id).all()
        return [r[0] for r in rows]

    def get_weights(self, team: str) -> Dict[int, int]:
        rows = self.db.query(VipEmployeeShare).filter(VipEmployeeShare.team == team).all()
        return {r.employee_id: int(r.share_bps or 0) for r in rows}

    def list_payments(self, team: str, start: datetime, end: datetime) -> List[VipPayment]:
        """[start, end) 内的付款"""
        return (
            self.db.query(VipPayment)
            .filter(
                VipPayment.team == team,
                VipPayment.paid_at >= start,
                VipPayment.paid_at < end,
            )
            .order_by(VipPayment.paid_at, VipPayment.id)
            .all()
        )
