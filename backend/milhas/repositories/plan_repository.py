"""
利润分成方案仓储
"""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session, selectinload

from milhas.models.profit_share import ProfitShare, ProfitShareItem
from milhas.models.user import User
from milhas.schemas.profit_share import PlanItem, PlanPatch


class PlanRepository:
    """利润分成方案仓储（只读查询可并发）"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_owners(
        self,
        team: str,
        owner_ids: Iterable[int],
        until: Optional[datetime] = None,
    ) -> List[ProfitShare]:
        """获取多个 owner 的有效方案，按 effective_from 倒序"""
        owner_ids = list(set(owner_ids))
        if not owner_ids:
            return []
        query = (
            self.db.query(ProfitShare)
            .options(selectinload(ProfitShare.items))
            .filter(
                ProfitShare.team == team,
                ProfitShare.owner_id.in_(owner_ids),
                ProfitShare.is_active == True,  # noqa: E712
            )
        )
        if until is not None:
            query = query.filter(ProfitShare.effective_from < until)
        return query.order_by(ProfitShare.effective_from.desc(), ProfitShare.id.desc()).all()

    def get_starting_at(self, team: str, owner_id: int, effective_from: datetime) -> Optional[ProfitShare]:
        return self.db.query(ProfitShare).filter(
            ProfitShare.team == team,
            ProfitShare.owner_id == owner_id,
            ProfitShare.effective_from == effective_from,
        ).first()

    def get_preceding(self, team: str, owner_id: int, effective_from: datetime) -> Optional[ProfitShare]:
        """紧邻的前一个方案"""
        return self.db.query(ProfitShare).filter(
            ProfitShare.team == team,
            ProfitShare.owner_id == owner_id,
            ProfitShare.is_active == True,  # noqa: E712
            ProfitShare.effective_from < effective_from,
        ).order_by(ProfitShare.effective_from.desc()).first()

    def get_following(self, team: str, owner_id: int, effective_from: datetime) -> Optional[ProfitShare]:
        """紧邻的后一个方案"""
        return self.db.query(ProfitShare).filter(
            ProfitShare.team == team,
            ProfitShare.owner_id == owner_id,
            ProfitShare.is_active == True,  # noqa: E712
            ProfitShare.effective_from > effective_from,
        ).order_by(ProfitShare.effective_from.asc()).first()

    def create(
        self,
        team: str,
        owner_id: int,
        effective_from: datetime,
        effective_to: Optional[datetime],
        items: List[PlanItem],
    ) -> ProfitShare:
        plan = ProfitShare(
            team=team,
            owner_id=owner_id,
            is_active=True,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        plan.items = self._build_items(items)
        self.db.add(plan)
        self.db.flush()
        return plan

    def replace_items(self, plan: ProfitShare, items: List[PlanItem]) -> None:
        plan.items.clear()
        # 先删除旧项，避免 (plan_id, payee_id) 唯一约束冲突
        self.db.flush()
        plan.items.extend(self._build_items(items))
        self.db.flush()

    def apply_patch(self, plan: ProfitShare, patch: PlanPatch) -> None:
        for name, value in patch.changes().items():
            setattr(plan, name, value)
        self.db.flush()

    def team_user_ids(self, team: str, user_ids: Iterable[int]) -> set:
        """user_ids 中属于该团队的部分"""
        user_ids = list(set(user_ids))
        if not user_ids:
            return set()
        rows = self.db.query(User.id).filter(User.team == team, User.id.in_(user_ids)).all()
        return {r[0] for r in rows}

    def list_team_users(self, team: str) -> List[User]:
        return self.db.query(User).filter(User.team == team).order_by(User.id).all()

    @staticmethod
    def _build_items(items: List[PlanItem]) -> List[ProfitShareItem]:
        return [
            ProfitShareItem(payee_id=item.payee_id, bps=item.bps, position=i)
            for i, item in enumerate(items)
        ]
