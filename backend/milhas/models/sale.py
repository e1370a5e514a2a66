"""
销售模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from milhas.database import Base
import enum


class LoyaltyProgram(str, enum.Enum):
    """积分计划"""
    LATAM = "LATAM"
    SMILES = "SMILES"
    LIVELO = "LIVELO"
    ESFERA = "ESFERA"


class PaymentStatus(str, enum.Enum):
    """收款状态"""
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELED = "CANCELED"


class Sale(Base):
    """销售记录（不可变的财务事实，仅取消会修改状态）

    points_value_cents / commission_cents / bonus_cents / target_milheiro_cents
    存 0 表示“未预先计算”，读取时在仓储层转换为 None。
    """
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    date = Column(DateTime, nullable=False, index=True)  # UTC（naive）
    program = Column(Enum(LoyaltyProgram), nullable=False)
    points = Column(Integer, nullable=False)
    milheiro_cents = Column(Integer, nullable=False)  # 每千点售价
    embarque_fee_cents = Column(Integer, default=0, nullable=False)  # 登机税报销

    points_value_cents = Column(Integer, default=0, nullable=False)
    commission_cents = Column(Integer, default=0, nullable=False)
    bonus_cents = Column(Integer, default=0, nullable=False)
    target_milheiro_cents = Column(Integer, default=0, nullable=False)

    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    seller_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    cedente_id = Column(Integer, ForeignKey("cedentes.id"), nullable=True, index=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=True)

    seller = relationship("User")
    cedente = relationship("Cedente")
    purchase = relationship("Purchase")
