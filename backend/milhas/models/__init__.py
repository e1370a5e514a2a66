"""
数据模型
"""
from milhas.models.user import User, UserRole
from milhas.models.cedente import Cedente
from milhas.models.purchase import Purchase
from milhas.models.sale import Sale, LoyaltyProgram, PaymentStatus
from milhas.models.program_settings import ProgramSettings
from milhas.models.profit_share import ProfitShare, ProfitShareItem
from milhas.models.employee_payout import EmployeePayout
from milhas.models.vip import VipRateioSetting, VipEmployeeShare, VipPayment

__all__ = [
    "User",
    "UserRole",
    "Cedente",
    "Purchase",
    "Sale",
    "LoyaltyProgram",
    "PaymentStatus",
    "ProgramSettings",
    "ProfitShare",
    "ProfitShareItem",
    "EmployeePayout",
    "VipRateioSetting",
    "VipEmployeeShare",
    "VipPayment",
]
