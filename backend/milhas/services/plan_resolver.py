"""
利润分成方案解析

读取：给定 owner、团队和时间点，选出当时生效的唯一方案；
      找不到时返回“100% 归 owner 本人”的默认方案。
写入：保存新方案时，把紧邻的前一个方案截止到新方案开始，
      并让新方案截止到紧邻的后一个方案开始，全部在一个事务里完成。
"""
import logging
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from milhas.exceptions import ConsistencyWarning, ValidationError
from milhas.logging_config import AlertLevel, log_alert
from milhas.models.profit_share import ProfitShare
from milhas.repositories.plan_repository import PlanRepository
from milhas.schemas.profit_share import PlanItem, PlanPatch, PlanUpsertRequest, TeamPlanRow
from milhas.utils.money import BPS_TOTAL, percent_to_bps
from milhas.utils.timezone import local_midnight_utc, to_utc_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPlan:
    """解析后的方案（可能是合成的默认方案）"""
    owner_id: int
    items: Tuple[Tuple[int, int], ...]  # ((payee_id, bps), ...)，保持录入顺序
    plan_id: Optional[int] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    is_default: bool = False

    @property
    def sum_bps(self) -> int:
        return sum(bps for _, bps in self.items)


def default_plan(owner_id: int) -> ResolvedPlan:
    """默认方案：100% 归 owner 本人"""
    return ResolvedPlan(owner_id=owner_id, items=((owner_id, BPS_TOTAL),), is_default=True)


def select_plan(plans: Sequence[ProfitShare], instant: datetime) -> Optional[ProfitShare]:
    """
    选出 instant 时刻生效的方案

    条件：effective_from <= instant 且（effective_to 为空 或 instant < effective_to），
    若有多个符合，取 effective_from 最晚的一个。
    """
    chosen = None
    for plan in plans:
        if not plan.is_active:
            continue
        if plan.effective_from > instant:
            continue
        if plan.effective_to is not None and instant >= plan.effective_to:
            continue
        if chosen is None or plan.effective_from > chosen.effective_from:
            chosen = plan
    return chosen


def to_resolved(owner_id: int, plan: Optional[ProfitShare]) -> ResolvedPlan:
    """ORM 方案转为 ResolvedPlan；空方案或 bps 合计不为 10000 时回退默认方案"""
    if plan is None:
        return default_plan(owner_id)

    items = tuple((item.payee_id, int(item.bps)) for item in plan.items)
    sum_bps = sum(bps for _, bps in items)
    if not items or sum_bps != BPS_TOTAL:
        message = (
            f"方案 {plan.id} 没有分成项" if not items
            else f"方案 {plan.id} 的 bps 合计为 {sum_bps}"
        )
        warnings.warn(message, ConsistencyWarning, stacklevel=2)
        log_alert(
            logger,
            AlertLevel.P2_WARNING,
            "分成方案配置异常",
            f"{message}，已回退为 100% 归属 owner",
            context={"plan_id": plan.id, "owner_id": owner_id, "sum_bps": sum_bps},
            suggested_actions=["在分成配置中重新保存该员工的方案"],
        )
        return default_plan(owner_id)

    return ResolvedPlan(
        owner_id=owner_id,
        items=items,
        plan_id=plan.id,
        effective_from=plan.effective_from,
        effective_to=plan.effective_to,
    )


@dataclass
class PlanBook:
    """一批 owner 的方案缓存，日结算时逐笔销售按时间点解析"""
    plans_by_owner: Dict[int, List[ProfitShare]] = field(default_factory=dict)

    def resolve(self, owner_id: int, instant: datetime) -> ResolvedPlan:
        plan = select_plan(self.plans_by_owner.get(owner_id, []), to_utc_naive(instant))
        return to_resolved(owner_id, plan)


class PlanResolver:
    """利润分成方案解析器"""

    def __init__(self, db: Session, repository: Optional[PlanRepository] = None):
        self.db = db
        self.repository = repository or PlanRepository(db)

    def resolve(self, owner_id: int, team: str, instant: datetime) -> ResolvedPlan:
        """返回 owner 在 instant 时刻生效的方案"""
        instant = to_utc_naive(instant)
        plans = self.repository.list_for_owners(team, [owner_id], until=None)
        return to_resolved(owner_id, select_plan(plans, instant))

    def load_book(self, team: str, owner_ids: Iterable[int], until: Optional[datetime] = None) -> PlanBook:
        """一次查询预加载多个 owner 的方案"""
        book = PlanBook()
        for plan in self.repository.list_for_owners(team, owner_ids, until=until):
            book.plans_by_owner.setdefault(plan.owner_id, []).append(plan)
        return book

    def upsert(
        self,
        owner_id: int,
        team: str,
        items: Sequence[PlanItem],
        effective_from: datetime,
    ) -> ProfitShare:
        """
        保存方案

        校验失败抛出 ValidationError，不做任何写入。
        """
        effective_from = to_utc_naive(effective_from)
        items = list(items)
        self._validate(owner_id, team, items)

        try:
            preceding = self.repository.get_preceding(team, owner_id, effective_from)
            following = self.repository.get_following(team, owner_id, effective_from)
            effective_to = following.effective_from if following is not None else None

            if preceding is not None:
                self.repository.apply_patch(preceding, PlanPatch(effective_to=effective_from))

            plan = self.repository.get_starting_at(team, owner_id, effective_from)
            if plan is not None:
                # 同一生效时间：原地替换分成项，并按当前相邻方案重新确定区间
                self.repository.replace_items(plan, items)
                self.repository.apply_patch(plan, PlanPatch(is_active=True, effective_to=effective_to))
            else:
                plan = self.repository.create(
                    team=team,
                    owner_id=owner_id,
                    effective_from=effective_from,
                    effective_to=effective_to,
                    items=items,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"分成方案已保存: owner={owner_id} team={team} from={effective_from.isoformat()}",
            extra={"plan_id": plan.id, "owner_id": owner_id, "team": team},
        )
        return plan

    def upsert_from_request(self, team: str, request: PlanUpsertRequest, tz_name: str) -> ProfitShare:
        """管理员录入：百分比转 bps，生效日按业务时区零点"""
        items = [PlanItem(payee_id=it.payee_id, bps=percent_to_bps(it.percent)) for it in request.items]
        effective_from = local_midnight_utc(request.effective_from, tz_name)
        return self.upsert(request.owner_id, team, items, effective_from)

    def list_team_plans(self, team: str, instant: datetime) -> List[TeamPlanRow]:
        """团队每个成员在 instant 时刻的方案（无方案的显示默认方案）"""
        users = self.repository.list_team_users(team)
        book = self.load_book(team, [u.id for u in users])
        rows = []
        for user in users:
            resolved = book.resolve(user.id, instant)
            rows.append(TeamPlanRow(
                owner_id=user.id,
                username=user.username,
                plan_id=resolved.plan_id,
                effective_from=resolved.effective_from,
                effective_to=resolved.effective_to,
                items=[PlanItem(payee_id=p, bps=b) for p, b in resolved.items],
                sum_bps=resolved.sum_bps,
                is_default=resolved.is_default,
            ))
        return rows

    def _validate(self, owner_id: int, team: str, items: List[PlanItem]) -> None:
        if not items:
            raise ValidationError("至少需要一个分成对象", field="items")

        seen = set()
        for item in items:
            if item.payee_id in seen:
                raise ValidationError(f"分成对象重复: {item.payee_id}", field="items")
            seen.add(item.payee_id)
            if item.bps < 0 or item.bps > BPS_TOTAL:
                raise ValidationError(f"bps 超出范围: {item.payee_id}={item.bps}", field="items")

        sum_bps = sum(item.bps for item in items)
        if sum_bps != BPS_TOTAL:
            raise ValidationError(f"分成合计必须为 100%（当前 {sum_bps} bps）", field="items")

        in_team = self.repository.team_user_ids(team, [owner_id, *seen])
        if owner_id not in in_team:
            raise ValidationError(f"owner {owner_id} 不属于团队 {team}", field="owner_id")
        outsiders = sorted(seen - in_team)
        if outsiders:
            raise ValidationError(f"分成对象不属于团队 {team}: {outsiders}", field="items")
