"""
用户（员工）模型
"""
from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.sql import func
from milhas.database import Base
import enum


class UserRole(str, enum.Enum):
    """用户角色枚举"""
    ADMIN = "admin"  # 管理员 - 配置分成方案、标记发放
    STAFF = "staff"  # 员工


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=True)
    team = Column(String(50), nullable=False, index=True)  # 所属团队
    role = Column(Enum(UserRole), nullable=False, default=UserRole.STAFF)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_admin(self) -> bool:
        """是否为管理员"""
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User {self.id}: {self.username}@{self.team}>"
