"""
测试公共夹具：内存 SQLite 数据库与数据构造函数
"""
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import milhas.models  # noqa: F401
from milhas.database import Base
from milhas.models import (
    Cedente,
    LoyaltyProgram,
    PaymentStatus,
    ProfitShare,
    ProfitShareItem,
    Purchase,
    Sale,
    User,
    UserRole,
)

TEAM = "T"
TZ = "America/Recife"  # UTC-3，无夏令时


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make(username: str, team: str = TEAM, role: UserRole = UserRole.STAFF) -> User:
        user = User(username=username, team=team, role=role)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_cedente(db):
    def _make(owner: User, name: str = "cedente") -> Cedente:
        cedente = Cedente(name=name, owner_id=owner.id)
        db.add(cedente)
        db.commit()
        return cedente
    return _make


@pytest.fixture
def make_purchase(db):
    def _make(cost: int = 0, target: int = 0, team: str = TEAM) -> Purchase:
        purchase = Purchase(team=team, cost_milheiro_cents=cost, target_milheiro_cents=target)
        db.add(purchase)
        db.commit()
        return purchase
    return _make


@pytest.fixture
def make_sale(db):
    def _make(
        when: datetime,
        cedente_id,
        seller_id=None,
        points: int = 10000,
        milheiro: int = 3000,
        fee: int = 0,
        purchase_id=None,
        program: LoyaltyProgram = LoyaltyProgram.LATAM,
        status: PaymentStatus = PaymentStatus.PAID,
        team: str = TEAM,
        **extra,
    ) -> Sale:
        sale = Sale(
            team=team,
            date=when,
            program=program,
            points=points,
            milheiro_cents=milheiro,
            embarque_fee_cents=fee,
            payment_status=status,
            seller_id=seller_id,
            cedente_id=cedente_id,
            purchase_id=purchase_id,
            **extra,
        )
        db.add(sale)
        db.commit()
        return sale
    return _make


@pytest.fixture
def make_plan(db):
    """直接写入方案（绕过 upsert 校验，用于构造历史数据）"""
    def _make(owner: User, items, effective_from: datetime, effective_to=None, team: str = TEAM) -> ProfitShare:
        plan = ProfitShare(
            team=team,
            owner_id=owner.id,
            is_active=True,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        plan.items = [
            ProfitShareItem(payee_id=payee_id, bps=bps, position=i)
            for i, (payee_id, bps) in enumerate(items)
        ]
        db.add(plan)
        db.commit()
        return plan
    return _make
