"""
测试员工日结算
"""
import gc
import random
import threading
import time
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from milhas.database import Base
from milhas.exceptions import NotFoundError, ValidationError
from milhas.models import (
    Cedente,
    EmployeePayout,
    LoyaltyProgram,
    PaymentStatus,
    ProfitShare,
    ProfitShareItem,
    Sale,
    User,
)
from milhas.repositories.sale_repository import SaleRepository
from milhas.services.commission_calculator import SaleCommissionCalculator, SaleInput
from milhas.services.payout_service import DailyPayoutAggregator, aggregate_day, build_patch
from milhas.services.plan_resolver import ResolvedPlan, default_plan

TEAM = "T"
TZ = "America/Recife"  # UTC-3
DAY = date(2024, 1, 15)
SALE_TIME = datetime(2024, 1, 15, 13, 0)  # 当地 10:00
PLAN_START = datetime(2024, 1, 1, 3, 0)  # 当地 2024-01-01 00:00


@pytest.fixture
def scenario(db, make_user, make_cedente, make_plan):
    """owner 的方案 70/30，销售员另有其人"""
    owner = make_user("owner")
    partner = make_user("partner")
    seller = make_user("seller")
    cedente = make_cedente(owner)
    make_plan(owner, [(owner.id, 7000), (partner.id, 3000)], PLAN_START)
    return owner, partner, seller, cedente


@pytest.fixture
def aggregator(db):
    return DailyPayoutAggregator(
        db,
        tz_name=TZ,
        tax_bps=800,
        flat_commission_bps=100,
        bonus_share_bps=3000,
        default_program_costs={"LATAM": 2000, "SMILES": 1800, "LIVELO": 2200, "ESFERA": 1700},
    )


def _rows(aggregator, day=DAY):
    return {
        row.user_id: (row.gross_cents, row.tax_cents, row.fee_cents, row.net_cents)
        for row in aggregator.list_day(TEAM, day)
    }


class TestAggregateDay:
    """测试纯汇总逻辑"""

    def test_gross_equals_commissions_plus_pools(self):
        """Σ毛额 == Σ(C1 + C2 + 利润池)"""
        rng = random.Random(3)
        calculator = SaleCommissionCalculator()
        plans = {
            1: ResolvedPlan(owner_id=1, items=((1, 7000), (2, 3000))),
            2: ResolvedPlan(owner_id=2, items=((2, 3333), (3, 3333), (1, 3334))),
        }
        sales = [
            SaleInput(
                sale_id=i,
                date=SALE_TIME,
                program="LATAM",
                points=rng.randint(1000, 200000),
                milheiro_cents=rng.randint(1500, 4000),
                fee_cents=rng.randint(0, 5000),
                seller_id=rng.choice([1, 2, 3, 4]),
                owner_id=rng.choice([1, 2, 3]),
                target_milheiro_cents=rng.choice([None, 2500]),
            )
            for i in range(200)
        ]

        totals = aggregate_day(sales, calculator, lambda owner, _: plans.get(owner) or default_plan(owner))

        expected = 0
        for sale in sales:
            result = calculator.compute(sale)
            expected += result.commission_cents + result.bonus_cents + result.pool_cents
        assert sum(t.gross_cents for t in totals.values()) == expected
        assert sum(t.fee_cents for t in totals.values()) == sum(s.fee_cents for s in sales)
        assert sum(t.sale_count for t in totals.values()) == len(sales)

    def test_plan_resolved_at_sale_time(self):
        seen = []

        def resolve(owner_id, instant):
            seen.append((owner_id, instant))
            return default_plan(owner_id)

        sale = SaleInput(
            sale_id=1, date=SALE_TIME, program="LATAM", points=10000,
            milheiro_cents=3000, fee_cents=0, seller_id=3, owner_id=1,
        )
        aggregate_day([sale], SaleCommissionCalculator(), resolve)
        assert seen == [(1, SALE_TIME)]

    def test_build_patch(self):
        totals = aggregate_day(
            [SaleInput(
                sale_id=1, date=SALE_TIME, program="LATAM", points=10000,
                milheiro_cents=3000, fee_cents=500, seller_id=3, owner_id=1,
            )],
            SaleCommissionCalculator(),
            lambda owner, _: default_plan(owner),
        )
        patch = build_patch(totals[3], 800)
        # pv=29500，C1=295，税 round(23.6)=24，报销 500 不计税
        assert patch.gross_cents == 295
        assert patch.tax_cents == 24
        assert patch.fee_cents == 500
        assert patch.net_cents == 771
        assert patch.breakdown.sale_count == 1


class TestComputeDay:
    """测试日结算与对账"""

    def test_end_to_end(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)

        result = aggregator.compute_day(TEAM, DAY)

        assert result.sales == 1
        assert result.users == 3
        assert result.inserted == 3
        assert _rows(aggregator) == {
            seller.id: (300, 24, 0, 276),
            owner.id: (6790, 543, 0, 6247),
            partner.id: (2910, 233, 0, 2677),
        }

        by_user = {row.user_id: row for row in aggregator.list_day(TEAM, DAY)}
        assert by_user[seller.id].breakdown.flat_commission_cents == 300
        assert by_user[seller.id].breakdown.sale_count == 1
        assert by_user[owner.id].breakdown.pool_share_cents == 6790
        assert by_user[owner.id].breakdown.sale_count == 0

    def test_fee_reimbursed_untaxed(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id, fee=500)

        aggregator.compute_day(TEAM, DAY)
        rows = _rows(aggregator)

        assert rows[seller.id] == (295, 24, 500, 771)
        assert rows[owner.id][0] + rows[partner.id][0] == 9205

    def test_idempotent(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)

        aggregator.compute_day(TEAM, DAY)
        first = _rows(aggregator)
        second_run = aggregator.compute_day(TEAM, DAY)

        assert _rows(aggregator) == first
        assert second_run.inserted == 0
        assert second_run.updated == 3
        assert db.query(EmployeePayout).count() == 3

    def test_paid_row_frozen(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        sale = make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        aggregator.compute_day(TEAM, DAY)
        aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=seller.id, today=date(2024, 2, 1))

        sale.milheiro_cents = 4000
        db.commit()
        result = aggregator.compute_day(TEAM, DAY)

        rows = _rows(aggregator)
        # pv=40000，C1=400，利润池 19600 -> partner 5880；owner 已发放，保持 6790
        assert rows[owner.id] == (6790, 543, 0, 6247)
        assert rows[partner.id][0] == 5880
        assert rows[seller.id][0] == 400
        assert result.frozen == 1
        assert result.updated == 2

    def test_stale_unpaid_rows_deleted(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        sale = make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        aggregator.compute_day(TEAM, DAY)
        aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=seller.id, today=date(2024, 2, 1))

        sale.payment_status = PaymentStatus.CANCELED
        db.commit()
        result = aggregator.compute_day(TEAM, DAY)

        assert result.sales == 0
        assert result.deleted == 2
        assert result.frozen == 1
        assert set(_rows(aggregator)) == {owner.id}

    def test_missing_cedente_aborts_without_writes(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        sale = make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        aggregator.compute_day(TEAM, DAY)
        before = _rows(aggregator)

        sale.milheiro_cents = 4000
        db.commit()
        broken = make_sale(datetime(2024, 1, 15, 14, 0), 999, seller_id=seller.id)

        with pytest.raises(NotFoundError) as exc_info:
            aggregator.compute_day(TEAM, DAY)

        assert exc_info.value.context["team"] == TEAM
        assert exc_info.value.context["date"] == "2024-01-15"
        assert exc_info.value.context["sale_id"] == broken.id
        assert _rows(aggregator) == before

    def test_business_day_bounds(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(datetime(2024, 1, 16, 2, 30), cedente.id, seller_id=seller.id)  # 当地 15 日 23:30
        make_sale(datetime(2024, 1, 15, 2, 59), cedente.id, seller_id=seller.id)  # 当地 14 日 23:59

        day_15 = aggregator.compute_day(TEAM, DAY)
        day_14 = aggregator.compute_day(TEAM, date(2024, 1, 14))

        assert day_15.sales == 1
        assert day_14.sales == 1

    def test_historical_plan_used(self, db, make_user, make_cedente, make_plan, make_sale, aggregator):
        owner = make_user("owner")
        partner = make_user("partner")
        cedente = make_cedente(owner)
        change_at = datetime(2024, 1, 15, 3, 0)
        make_plan(owner, [(owner.id, 10000)], PLAN_START, change_at)
        make_plan(owner, [(owner.id, 5000), (partner.id, 5000)], change_at)
        make_sale(datetime(2024, 1, 14, 13, 0), cedente.id)
        make_sale(SALE_TIME, cedente.id)

        aggregator.compute_day(TEAM, date(2024, 1, 14))
        aggregator.compute_day(TEAM, DAY)

        assert _rows(aggregator, date(2024, 1, 14)) == {owner.id: (9700, 776, 0, 8924)}
        rows = _rows(aggregator, DAY)
        assert rows[owner.id][0] == 4850
        assert rows[partner.id][0] == 4850

    def test_sale_without_seller(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=None)

        result = aggregator.compute_day(TEAM, DAY)

        assert result.users == 2
        assert set(_rows(aggregator)) == {owner.id, partner.id}

    def test_other_team_excluded(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id, team="OTHER")

        result = aggregator.compute_day(TEAM, DAY)
        assert result.sales == 0
        assert _rows(aggregator) == {}

    def test_compute_range(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        make_sale(datetime(2024, 1, 17, 13, 0), cedente.id, seller_id=seller.id)

        results = aggregator.compute_range(TEAM, DAY, date(2024, 1, 17))

        assert [r.date for r in results] == [date(2024, 1, 15), date(2024, 1, 16), date(2024, 1, 17)]
        assert [r.sales for r in results] == [1, 0, 1]


@pytest.fixture
def file_sessionmaker(tmp_path):
    """文件型 SQLite，供多线程各自开会话"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'payouts.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        engine.dispose()


def _seed_scenario(session_factory):
    session = session_factory()
    try:
        owner = User(username="owner", team=TEAM)
        partner = User(username="partner", team=TEAM)
        seller = User(username="seller", team=TEAM)
        session.add_all([owner, partner, seller])
        session.flush()
        cedente = Cedente(name="cedente", owner_id=owner.id)
        plan = ProfitShare(team=TEAM, owner_id=owner.id, is_active=True, effective_from=PLAN_START)
        plan.items = [
            ProfitShareItem(payee_id=owner.id, bps=7000, position=0),
            ProfitShareItem(payee_id=partner.id, bps=3000, position=1),
        ]
        session.add_all([cedente, plan])
        session.flush()
        session.add(Sale(
            team=TEAM, date=SALE_TIME, program=LoyaltyProgram.LATAM, points=10000,
            milheiro_cents=3000, embarque_fee_cents=0, payment_status=PaymentStatus.PAID,
            seller_id=seller.id, cedente_id=cedente.id,
        ))
        session.commit()
        return owner.id, partner.id, seller.id
    finally:
        session.close()


class TestRunLock:
    """测试同一 (team, date) 的运行互斥"""

    def test_lock_per_key(self):
        first = DailyPayoutAggregator._lock_for(TEAM, DAY)
        second = DailyPayoutAggregator._lock_for(TEAM, DAY)
        other_day = DailyPayoutAggregator._lock_for(TEAM, date(2024, 1, 16))
        other_team = DailyPayoutAggregator._lock_for("OTHER", DAY)

        assert first is second
        assert first is not other_day
        assert first is not other_team
        assert other_day is not other_team

    def test_locks_released_after_runs(self, db, scenario, aggregator, make_sale):
        """运行结束后不保留锁条目"""
        cedente = scenario[3]
        make_sale(SALE_TIME, cedente.id, seller_id=scenario[2].id)

        aggregator.compute_range("LOCK-TEAM", date(2024, 1, 1), date(2024, 1, 31))
        aggregator.compute_day(TEAM, DAY)
        gc.collect()

        keys = list(DailyPayoutAggregator._locks.keys())
        assert not [k for k in keys if k[0] in ("LOCK-TEAM", TEAM)]

    def test_concurrent_runs_serialized(self, file_sessionmaker):
        owner_id, partner_id, seller_id = _seed_scenario(file_sessionmaker)
        state = {"active": 0, "max_active": 0}
        guard = threading.Lock()

        class SlowSaleRepository(SaleRepository):
            def list_for_window(self, team, start, end):
                with guard:
                    state["active"] += 1
                    state["max_active"] = max(state["max_active"], state["active"])
                time.sleep(0.05)
                return super().list_for_window(team, start, end)

        class TrackedAggregator(DailyPayoutAggregator):
            def _reconcile(self, team, day, totals):
                try:
                    return super()._reconcile(team, day, totals)
                finally:
                    with guard:
                        state["active"] -= 1

        barrier = threading.Barrier(2)
        errors = []

        def run():
            session = file_sessionmaker()
            try:
                runner = TrackedAggregator(
                    session,
                    sale_repository=SlowSaleRepository(session),
                    tz_name=TZ,
                    tax_bps=800,
                    flat_commission_bps=100,
                    bonus_share_bps=3000,
                    default_program_costs={"LATAM": 2000},
                )
                barrier.wait()
                runner.compute_day(TEAM, DAY)
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=run) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert state["max_active"] == 1

        session = file_sessionmaker()
        try:
            rows = session.query(EmployeePayout).filter(EmployeePayout.team == TEAM).all()
            assert len(rows) == 3
            assert {r.user_id: (r.gross_cents, r.tax_cents, r.fee_cents, r.net_cents) for r in rows} == {
                seller_id: (300, 24, 0, 276),
                owner_id: (6790, 543, 0, 6247),
                partner_id: (2910, 233, 0, 2677),
            }
        finally:
            session.close()


class TestMarkPaid:
    """测试发放标记"""

    def test_only_closed_days(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        aggregator.compute_day(TEAM, DAY)

        with pytest.raises(ValidationError):
            aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=seller.id, today=DAY)

        row = aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=seller.id, today=date(2024, 1, 16))
        assert row.paid_by_id == seller.id
        assert row.paid_at is not None

    def test_already_paid_returned_unchanged(self, db, scenario, aggregator, make_sale):
        owner, partner, seller, cedente = scenario
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        aggregator.compute_day(TEAM, DAY)

        first = aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=seller.id, today=date(2024, 1, 16))
        paid_at = first.paid_at
        second = aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=partner.id, today=date(2024, 1, 16))

        assert second.paid_by_id == seller.id
        assert second.paid_at == paid_at

    def test_missing_row(self, db, scenario, aggregator):
        owner = scenario[0]
        with pytest.raises(NotFoundError):
            aggregator.mark_paid(TEAM, DAY, owner.id, paid_by_id=owner.id, today=date(2024, 1, 16))


class TestMonthSummary:
    """测试月度汇总"""

    def test_totals(self, db, scenario, aggregator, make_sale, make_user):
        owner, partner, seller, cedente = scenario
        idle = make_user("idle")
        make_sale(SALE_TIME, cedente.id, seller_id=seller.id)
        make_sale(datetime(2024, 1, 16, 13, 0), cedente.id, seller_id=seller.id)
        make_sale(datetime(2024, 2, 1, 13, 0), cedente.id, seller_id=seller.id)
        for day in (date(2024, 1, 15), date(2024, 1, 16), date(2024, 2, 1)):
            aggregator.compute_day(TEAM, day)

        summary = aggregator.month_summary(TEAM, "2024-01")

        by_user = {row.user_id: row for row in summary.rows}
        assert set(by_user) == {owner.id, partner.id, seller.id, idle.id}
        assert by_user[seller.id].gross_cents == 600
        assert by_user[seller.id].sale_count == 2
        assert by_user[owner.id].gross_cents == 13580
        assert by_user[owner.id].days == 2
        assert by_user[partner.id].pool_share_cents == 5820
        assert by_user[idle.id].gross_cents == 0
        assert summary.totals.gross_cents == 20000
        assert summary.totals.net_cents == sum(r.net_cents for r in summary.rows)
        assert summary.start_date == date(2024, 1, 1)
        assert summary.end_date == date(2024, 2, 1)

    @pytest.mark.parametrize("month", ["2024/01", "January", "2024-13"])
    def test_invalid_month(self, db, aggregator, month):
        with pytest.raises(ValidationError):
            aggregator.month_summary(TEAM, month)
