"""
业务时区工具
数据库中的时间一律存为 naive UTC；“某一天”“某个月”按业务时区划分
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


def to_utc_naive(value: datetime) -> datetime:
    """带时区的时间转为 naive UTC；naive 时间视为已是 UTC"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def local_midnight_utc(day: date, tz_name: str) -> datetime:
    """业务时区某天零点对应的 naive UTC 时间"""
    local = datetime(day.year, day.month, day.day, tzinfo=ZoneInfo(tz_name))
    return to_utc_naive(local)


def day_bounds(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """某天的 [开始, 结束) 区间（naive UTC）"""
    return local_midnight_utc(day, tz_name), local_midnight_utc(day + timedelta(days=1), tz_name)


def month_bounds(year: int, month: int, tz_name: str) -> Tuple[datetime, datetime]:
    """某月的 [开始, 下月开始) 区间（naive UTC）"""
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    return (
        local_midnight_utc(date(year, month, 1), tz_name),
        local_midnight_utc(date(next_year, next_month, 1), tz_name),
    )


def local_date_of(instant_utc: datetime, tz_name: str) -> date:
    """naive UTC 时间在业务时区对应的日期"""
    aware = instant_utc.replace(tzinfo=timezone.utc) if instant_utc.tzinfo is None else instant_utc
    return aware.astimezone(ZoneInfo(tz_name)).date()


def today_local(tz_name: str, now: Optional[datetime] = None) -> date:
    """业务时区的今天"""
    now = now or datetime.now(timezone.utc)
    return local_date_of(now, tz_name)
