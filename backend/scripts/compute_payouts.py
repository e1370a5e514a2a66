#!/usr/bin/env python3
"""
员工日结算 / VIP 月度分成脚本

使用方法:
    cd backend
    python scripts/compute_payouts.py day --team recife --date 2024-01-15
    python scripts/compute_payouts.py range --team recife --start 2024-01-01 --end 2024-01-31
    python scripts/compute_payouts.py month --team recife --month 2024-01
    python scripts/compute_payouts.py vip --team recife --month 2024-01
"""
import argparse
import json
import logging
import os
import sys
from datetime import date

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from milhas.config import settings
from milhas.database import SessionLocal
from milhas.exceptions import PayoutError
from milhas.logging_config import setup_logging
from milhas.services.payout_service import DailyPayoutAggregator
from milhas.services.vip_rateio_service import VipMonthlyDistributor

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"日期格式应为 YYYY-MM-DD: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="员工结算与 VIP 分成")
    sub = parser.add_subparsers(dest="command", required=True)

    day = sub.add_parser("day", help="计算某一天")
    day.add_argument("--team", required=True)
    day.add_argument("--date", required=True, type=_parse_date)

    rng = sub.add_parser("range", help="逐天计算一个区间（含首尾）")
    rng.add_argument("--team", required=True)
    rng.add_argument("--start", required=True, type=_parse_date)
    rng.add_argument("--end", required=True, type=_parse_date)

    month = sub.add_parser("month", help="月度汇总")
    month.add_argument("--team", required=True)
    month.add_argument("--month", required=True)

    vip = sub.add_parser("vip", help="VIP 月度分成")
    vip.add_argument("--team", required=True)
    vip.add_argument("--month", default=None)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.LOG_DIR, settings.LOG_LEVEL)

    db = SessionLocal()
    try:
        if args.command == "day":
            output = DailyPayoutAggregator(db).compute_day(args.team, args.date).model_dump(mode="json")
        elif args.command == "range":
            results = DailyPayoutAggregator(db).compute_range(args.team, args.start, args.end)
            output = [r.model_dump(mode="json") for r in results]
        elif args.command == "month":
            output = DailyPayoutAggregator(db).month_summary(args.team, args.month).model_dump(mode="json")
        else:
            output = VipMonthlyDistributor(db).run_month(args.team, args.month).model_dump(mode="json")
    except PayoutError as e:
        logger.error(f"执行失败: {e}")
        return 1
    finally:
        db.close()

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
