"""
VIP 群组分成模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from milhas.database import Base


class VipRateioSetting(Base):
    """VIP 分成设置（每个团队一行）"""
    __tablename__ = "vip_rateio_settings"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), unique=True, nullable=False, index=True)
    owner_percent_bps = Column(Integer, nullable=True)
    others_percent_bps = Column(Integer, nullable=True)
    tax_percent_bps = Column(Integer, nullable=True)
    payout_days_csv = Column(String(100), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class VipEmployeeShare(Base):
    """“其他员工”部分的个人权重（可选，未配置时平均分配）"""
    __tablename__ = "vip_employee_shares"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    share_bps = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("team", "employee_id", name="uq_vip_share_team_employee"),
    )


class VipPayment(Base):
    """VIP 付款（分配引擎只读）"""
    __tablename__ = "vip_payments"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    responsible_employee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    paid_at = Column(DateTime, nullable=False, index=True)  # UTC（naive）

    responsible_employee = relationship("User")
