"""
利润分成方案模型
同一 owner 可有多个方案，时间区间 [effective_from, effective_to) 互不重叠
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from milhas.database import Base


class ProfitShare(Base):
    __tablename__ = "profit_shares"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    effective_from = Column(DateTime, nullable=False, index=True)  # UTC，含
    effective_to = Column(DateTime, nullable=True)  # UTC，不含；NULL = 无结束
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("team", "owner_id", "effective_from", name="uq_profit_share_owner_from"),
    )

    owner = relationship("User")
    items = relationship(
        "ProfitShareItem",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ProfitShareItem.position",
    )


class ProfitShareItem(Base):
    __tablename__ = "profit_share_items"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("profit_shares.id", ondelete="CASCADE"), nullable=False, index=True)
    payee_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    bps = Column(Integer, nullable=False)
    position = Column(Integer, default=0, nullable=False)  # 保持录入顺序（影响尾差归属）

    __table_args__ = (
        UniqueConstraint("plan_id", "payee_id", name="uq_profit_share_item_payee"),
    )

    plan = relationship("ProfitShare", back_populates="items")
    payee = relationship("User")
