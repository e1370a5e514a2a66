"""
全局设置：各积分计划默认每千点成本
"""
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.sql import func
from milhas.database import Base


class ProgramSettings(Base):
    __tablename__ = "program_settings"

    id = Column(Integer, primary_key=True, index=True)
    latam_rate_cents = Column(Integer, nullable=True)
    smiles_rate_cents = Column(Integer, nullable=True)
    livelo_rate_cents = Column(Integer, nullable=True)
    esfera_rate_cents = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
