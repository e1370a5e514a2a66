"""
员工日结算仓储
"""
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from milhas.models.employee_payout import EmployeePayout
from milhas.models.user import User
from milhas.schemas.payouts import PayoutPatch


class PayoutRepository:
    """员工日结算仓储"""

    def __init__(self, db: Session):
        self.db = db

    def lock_day(self, team: str, day: date) -> List[EmployeePayout]:
        """读取某天的全部结算行并加行锁（SQLite 忽略 FOR UPDATE）"""
        return (
            self.db.query(EmployeePayout)
            .filter(EmployeePayout.team == team, EmployeePayout.date == day)
            .order_by(EmployeePayout.user_id)
            .with_for_update()
            .all()
        )

    def list_day(self, team: str, day: date) -> List[EmployeePayout]:
        return (
            self.db.query(EmployeePayout)
            .filter(EmployeePayout.team == team, EmployeePayout.date == day)
            .order_by(EmployeePayout.user_id)
            .all()
        )

    def list_range(self, team: str, start: date, end: date) -> List[EmployeePayout]:
        """[start, end) 区间内的结算行"""
        return (
            self.db.query(EmployeePayout)
            .filter(
                EmployeePayout.team == team,
                EmployeePayout.date >= start,
                EmployeePayout.date < end,
            )
            .order_by(EmployeePayout.date, EmployeePayout.user_id)
            .all()
        )

    def get(self, team: str, day: date, user_id: int, for_update: bool = False) -> Optional[EmployeePayout]:
        query = self.db.query(EmployeePayout).filter(
            EmployeePayout.team == team,
            EmployeePayout.date == day,
            EmployeePayout.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def insert(self, team: str, day: date, user_id: int, patch: PayoutPatch) -> EmployeePayout:
        row = EmployeePayout(team=team, date=day, user_id=user_id, **patch.changes())
        self.db.add(row)
        return row

    def apply_patch(self, row: EmployeePayout, patch: PayoutPatch) -> None:
        for name, value in patch.changes().items():
            setattr(row, name, value)

    def delete(self, row: EmployeePayout) -> None:
        self.db.delete(row)

    def list_team_users(self, team: str) -> List[User]:
        return self.db.query(User).filter(User.team == team).order_by(User.id).all()
