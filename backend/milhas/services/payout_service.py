"""
员工日结算服务

流程:
    1. 按业务时区取某团队某天（当地零点到零点）的全部未取消销售
    2. 每笔销售：C1、C2、登机税报销记给销售员；利润按销售发生时刻生效的
       owner 方案拆分，利润池 = max(0, 利润 - C1 - C2)
    3. 按员工汇总：毛额 = ΣC1 + ΣC2 + Σ分成；税 = round(毛额 * 8%)；
       净额 = 毛额 - 税 + Σ报销（报销不计税、不分成）
    4. 在同一事务内对账：删除本次结果中已不存在且未发放的行，
       更新/插入其余行；已发放（paid_by_id 非空）的行一律不动
"""
import logging
import threading
import weakref
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from milhas.config import settings
from milhas.exceptions import NotFoundError, ValidationError
from milhas.logging_config import AlertLevel, log_alert
from milhas.models.employee_payout import EmployeePayout
from milhas.repositories.payout_repository import PayoutRepository
from milhas.repositories.sale_repository import SaleRepository
from milhas.schemas.payouts import (
    EmployeePayoutOut,
    MonthSummaryResponse,
    MonthSummaryRow,
    PayoutBreakdown,
    PayoutPatch,
    PayoutRunResult,
)
from milhas.services.commission_calculator import SaleCommissionCalculator, SaleInput
from milhas.services.plan_resolver import PlanResolver, ResolvedPlan
from milhas.utils.money import apply_bps, split_by_bps
from milhas.utils.timezone import day_bounds, today_local

logger = logging.getLogger(__name__)


@dataclass
class UserTotals:
    """单个员工当天的累计"""
    flat_commission_cents: int = 0
    bonus_commission_cents: int = 0
    pool_share_cents: int = 0
    fee_cents: int = 0
    sale_count: int = 0

    @property
    def gross_cents(self) -> int:
        return self.flat_commission_cents + self.bonus_commission_cents + self.pool_share_cents


def aggregate_day(
    sales: Iterable[SaleInput],
    calculator: SaleCommissionCalculator,
    resolve_plan: Callable[[int, datetime], ResolvedPlan],
) -> Dict[int, UserTotals]:
    """
    把一天的销售汇总为每个员工的累计（纯计算，不访问数据库）

    resolve_plan(owner_id, sale_date) 必须按销售自身的时间点解析方案，
    而不是按运行时间。
    """
    totals: Dict[int, UserTotals] = defaultdict(UserTotals)

    for sale in sales:
        result = calculator.compute(sale)

        if sale.seller_id is not None:
            seller = totals[sale.seller_id]
            seller.flat_commission_cents += result.commission_cents
            seller.bonus_commission_cents += result.bonus_cents
            seller.fee_cents += sale.fee_cents
            seller.sale_count += 1

        pool = result.pool_cents
        if pool <= 0:
            continue

        plan = resolve_plan(sale.owner_id, sale.date)
        for payee_id, cents in split_by_bps(pool, list(plan.items)).items():
            totals[payee_id].pool_share_cents += cents

    return dict(totals)


def build_patch(user_totals: UserTotals, tax_bps: int) -> PayoutPatch:
    """员工累计 -> 结算行的财务字段"""
    gross = user_totals.gross_cents
    tax = apply_bps(gross, tax_bps)
    return PayoutPatch(
        gross_cents=gross,
        tax_cents=tax,
        fee_cents=user_totals.fee_cents,
        net_cents=gross - tax + user_totals.fee_cents,
        breakdown=PayoutBreakdown(
            flat_commission_cents=user_totals.flat_commission_cents,
            bonus_commission_cents=user_totals.bonus_commission_cents,
            pool_share_cents=user_totals.pool_share_cents,
            sale_count=user_totals.sale_count,
            tax_bps=tax_bps,
        ),
    )


class DailyPayoutAggregator:
    """员工日结算"""

    # 同一 (team, date) 的运行在进程内串行；不同 key 可并发。
    # 弱引用：没有运行持有或等待时条目自动移除
    _locks: "weakref.WeakValueDictionary[Tuple[str, date], threading.Lock]" = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    def __init__(
        self,
        db: Session,
        sale_repository: Optional[SaleRepository] = None,
        payout_repository: Optional[PayoutRepository] = None,
        plan_resolver: Optional[PlanResolver] = None,
        tz_name: Optional[str] = None,
        tax_bps: Optional[int] = None,
        flat_commission_bps: Optional[int] = None,
        bonus_share_bps: Optional[int] = None,
        default_program_costs: Optional[Dict[str, int]] = None,
    ):
        self.db = db
        self.sale_repository = sale_repository or SaleRepository(db)
        self.payout_repository = payout_repository or PayoutRepository(db)
        self.plan_resolver = plan_resolver or PlanResolver(db)
        self.tz_name = tz_name or settings.BUSINESS_TIMEZONE
        self.tax_bps = settings.PAYOUT_TAX_BPS if tax_bps is None else tax_bps
        self.flat_commission_bps = settings.FLAT_COMMISSION_BPS if flat_commission_bps is None else flat_commission_bps
        self.bonus_share_bps = settings.BONUS_SHARE_BPS if bonus_share_bps is None else bonus_share_bps
        self.default_program_costs = default_program_costs or settings.default_program_costs()

    @classmethod
    def _lock_for(cls, team: str, day: date) -> threading.Lock:
        with cls._locks_guard:
            lock = cls._locks.get((team, day))
            if lock is None:
                lock = threading.Lock()
                cls._locks[(team, day)] = lock
            return lock

    def compute_day(self, team: str, day: date) -> PayoutRunResult:
        """
        计算并对账某团队某天的员工结算

        任一致命错误（如出让人缺失）都会回滚整个运行，不做部分提交。
        """
        with self._lock_for(team, day):
            try:
                start, end = day_bounds(day, self.tz_name)
                sales = self.sale_repository.list_for_window(team, start, end)

                calculator = SaleCommissionCalculator(
                    program_costs=self.sale_repository.program_costs(self.default_program_costs),
                    flat_commission_bps=self.flat_commission_bps,
                    bonus_share_bps=self.bonus_share_bps,
                )
                book = self.plan_resolver.load_book(team, {s.owner_id for s in sales}, until=end)

                totals = aggregate_day(sales, calculator, book.resolve)
                result = self._reconcile(team, day, totals)
                result.sales = len(sales)

                self.db.commit()
            except NotFoundError as e:
                self.db.rollback()
                e.context["team"] = team
                e.context["date"] = day.isoformat()
                log_alert(
                    logger,
                    AlertLevel.P1_URGENT,
                    "日结算中止",
                    str(e),
                    context=e.context,
                    suggested_actions=["修复销售关联的出让人后重新计算该日"],
                )
                raise
            except Exception:
                self.db.rollback()
                logger.exception(f"日结算失败: team={team} date={day.isoformat()}")
                raise

        logger.info(
            f"日结算完成: team={team} date={day.isoformat()} sales={result.sales} users={result.users}",
            extra=result.model_dump(mode="json"),
        )
        return result

    def _reconcile(self, team: str, day: date, totals: Dict[int, UserTotals]) -> PayoutRunResult:
        result = PayoutRunResult(team=team, date=day, sales=0, users=len(totals))
        existing: Dict[int, EmployeePayout] = {}

        for row in self.payout_repository.lock_day(team, day):
            if row.is_paid:
                result.frozen += 1
                existing[row.user_id] = row
            elif row.user_id not in totals:
                self.payout_repository.delete(row)
                result.deleted += 1
            else:
                existing[row.user_id] = row

        for user_id in sorted(totals):
            patch = build_patch(totals[user_id], self.tax_bps)
            row = existing.get(user_id)
            if row is None:
                self.payout_repository.insert(team, day, user_id, patch)
                result.inserted += 1
            elif not row.is_paid:
                self.payout_repository.apply_patch(row, patch)
                result.updated += 1

        self.db.flush()
        return result

    def compute_range(self, team: str, start: date, end: date) -> List[PayoutRunResult]:
        """逐天计算 [start, end]，任一天失败即停止（之前的天已各自提交）"""
        results = []
        current = start
        while current <= end:
            results.append(self.compute_day(team, current))
            current += timedelta(days=1)
        return results

    def mark_paid(
        self,
        team: str,
        day: date,
        user_id: int,
        paid_by_id: int,
        today: Optional[date] = None,
    ) -> EmployeePayout:
        """
        标记某员工某天已发放

        只能发放已结束的日期；已发放的行原样返回。发放后该行不再被重算覆盖。
        """
        today = today or today_local(self.tz_name)
        if day >= today:
            raise ValidationError("只能发放已结束的日期（今天之前）", field="date")

        with self._lock_for(team, day):
            try:
                row = self.payout_repository.get(team, day, user_id, for_update=True)
                if row is None:
                    raise NotFoundError("结算记录不存在", team=team, date=day.isoformat())
                if row.is_paid:
                    self.db.rollback()
                    return row

                self.payout_repository.apply_patch(
                    row, PayoutPatch(paid_by_id=paid_by_id, paid_at=datetime.utcnow())
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"结算已发放: team={team} date={day.isoformat()} user={user_id}",
            extra={"team": team, "date": day.isoformat(), "user_id": user_id, "paid_by_id": paid_by_id},
        )
        return row

    def list_day(self, team: str, day: date) -> List[EmployeePayoutOut]:
        return [EmployeePayoutOut.model_validate(row) for row in self.payout_repository.list_day(team, day)]

    def month_summary(self, team: str, month: str) -> MonthSummaryResponse:
        """按员工汇总某月（YYYY-MM）的日结算，团队成员即使为 0 也列出"""
        try:
            year, month_num = (int(part) for part in month.split("-"))
            start = date(year, month_num, 1)
        except ValueError:
            raise ValidationError(f"月份格式应为 YYYY-MM: {month!r}", field="month")
        end = date(year + 1, 1, 1) if month_num == 12 else date(year, month_num + 1, 1)

        rows_by_user: Dict[int, MonthSummaryRow] = {}
        for user in self.payout_repository.list_team_users(team):
            rows_by_user[user.id] = MonthSummaryRow(user_id=user.id, username=user.username)

        for payout in self.payout_repository.list_range(team, start, end):
            row = rows_by_user.get(payout.user_id)
            if row is None:
                username = payout.user.username if payout.user else str(payout.user_id)
                row = rows_by_user[payout.user_id] = MonthSummaryRow(user_id=payout.user_id, username=username)
            breakdown = PayoutBreakdown.model_validate(payout.breakdown or {})
            row.days += 1
            row.sale_count += breakdown.sale_count
            row.flat_commission_cents += breakdown.flat_commission_cents
            row.bonus_commission_cents += breakdown.bonus_commission_cents
            row.pool_share_cents += breakdown.pool_share_cents
            row.gross_cents += payout.gross_cents
            row.tax_cents += payout.tax_cents
            row.fee_cents += payout.fee_cents
            row.net_cents += payout.net_cents

        rows = [rows_by_user[user_id] for user_id in sorted(rows_by_user)]
        totals = MonthSummaryRow(user_id=0, username="TOTAL")
        for row in rows:
            for name in (
                "days", "sale_count", "flat_commission_cents", "bonus_commission_cents",
                "pool_share_cents", "gross_cents", "tax_cents", "fee_cents", "net_cents",
            ):
                setattr(totals, name, getattr(totals, name) + getattr(row, name))

        return MonthSummaryResponse(
            team=team,
            month=f"{year:04d}-{month_num:02d}",
            start_date=start,
            end_date=end,
            rows=rows,
            totals=totals,
        )
