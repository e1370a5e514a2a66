"""
应用配置
"""
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 数据库配置
    DATABASE_URL: str = "sqlite:///./milhas.db"

    # 日志配置
    LOG_DIR: str = str(Path(__file__).resolve().parents[1] / "logs")
    LOG_LEVEL: str = "INFO"

    # 业务时区：“一天”按当地零点到零点划分，而不是 UTC
    BUSINESS_TIMEZONE: str = "America/Recife"

    # 员工日结算
    PAYOUT_TAX_BPS: int = 800  # 8% 代扣税
    FLAT_COMMISSION_BPS: int = 100  # 佣金1：积分价值的 1%
    BONUS_SHARE_BPS: int = 3000  # 佣金2：超出目标部分的 30%

    # 各积分计划默认每千点成本（分），仅在采购批次没有成本时使用
    DEFAULT_COST_LATAM_CENTS: int = 2000
    DEFAULT_COST_SMILES_CENTS: int = 1800
    DEFAULT_COST_LIVELO_CENTS: int = 2200
    DEFAULT_COST_ESFERA_CENTS: int = 1700

    # VIP 分成默认值
    VIP_OWNER_BPS: int = 7000
    VIP_OTHERS_BPS: int = 3000
    VIP_TAX_BPS: int = 1000
    VIP_PAYOUT_DAYS: str = "1"  # 每月发放日，逗号分隔，例如 "1,15"

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),  # backend/.env
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def default_program_costs(self) -> dict:
        """各积分计划的默认每千点成本"""
        return {
            "LATAM": self.DEFAULT_COST_LATAM_CENTS,
            "SMILES": self.DEFAULT_COST_SMILES_CENTS,
            "LIVELO": self.DEFAULT_COST_LIVELO_CENTS,
            "ESFERA": self.DEFAULT_COST_ESFERA_CENTS,
        }


settings = Settings()
