"""
出让人（cedente）模型
积分账户的持有人，每个出让人归属一名员工（owner）
"""
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from milhas.database import Base


class Cedente(Base):
    __tablename__ = "cedentes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    owner = relationship("User")
