"""
员工日结算模型
每个 (team, date, user) 一行；paid_by_id 非空后不再被重算覆盖
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from milhas.database import Base


class EmployeePayout(Base):
    __tablename__ = "employee_payouts"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)  # 业务时区的自然日
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    gross_cents = Column(Integer, default=0, nullable=False)
    tax_cents = Column(Integer, default=0, nullable=False)
    fee_cents = Column(Integer, default=0, nullable=False)  # 登机税报销，不计税不分成
    net_cents = Column(Integer, default=0, nullable=False)
    breakdown = Column(JSON, nullable=False, default=dict)

    paid_at = Column(DateTime, nullable=True)
    paid_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("team", "date", "user_id", name="uq_employee_payout_team_day_user"),
    )

    user = relationship("User", foreign_keys=[user_id])
    paid_by = relationship("User", foreign_keys=[paid_by_id])

    @property
    def is_paid(self) -> bool:
        return self.paid_by_id is not None
