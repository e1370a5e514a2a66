"""
采购批次模型
销售可继承批次的每千点成本与目标价
"""
from sqlalchemy import Column, Integer, String
from milhas.database import Base


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True)
    team = Column(String(50), nullable=False, index=True)
    cost_milheiro_cents = Column(Integer, default=0, nullable=False)  # 0 = 未填写
    target_milheiro_cents = Column(Integer, default=0, nullable=False)  # 0 = 无目标
