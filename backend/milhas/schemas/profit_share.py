"""
利润分成方案 - Schemas
"""
from datetime import date, datetime
from typing import List, Optional, Union
from pydantic import BaseModel


class PlanItemIn(BaseModel):
    payee_id: int
    percent: Union[float, int, str]  # 两位小数，乘以 100 后四舍五入为 bps


class PlanUpsertRequest(BaseModel):
    """管理员保存分成方案"""
    owner_id: int
    effective_from: date  # 业务时区当天零点生效
    items: List[PlanItemIn]


class PlanItem(BaseModel):
    payee_id: int
    bps: int


class PlanPatch(BaseModel):
    """方案的部分更新；effective_to 显式设为 None 表示重新开放"""
    is_active: Optional[bool] = None
    effective_to: Optional[datetime] = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class TeamPlanRow(BaseModel):
    owner_id: int
    username: str
    plan_id: Optional[int] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    items: List[PlanItem]
    sum_bps: int
    is_default: bool
