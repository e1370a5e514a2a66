"""
金额工具函数
全部使用整数（分）运算，不使用浮点数；每次除法之后都有明确的取整规则：
- 按 bps 拆分的各份额：向下取整（floor），尾差由单独的规则归属
- 派生的单笔数值：四舍五入（round_div，0.5 向正无穷方向进位）
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Hashable, Iterable, Mapping, Optional, Sequence, Tuple, TypeVar

from milhas.exceptions import ValidationError

K = TypeVar("K", bound=Hashable)

BPS_TOTAL = 10000


def round_div(numerator: int, denominator: int) -> int:
    """
    整数除法并四舍五入

    公式：floor(numerator / denominator + 1/2)，纯整数计算，结果与
    JavaScript 的 Math.round 一致（-2.5 -> -2，2.5 -> 3）。

    示例:
        >>> round_div(5, 2)
        3
        >>> round_div(-5, 2)
        -2
        >>> round_div(9700 * 7000, 10000)
        6790
    """
    if denominator <= 0:
        raise ValueError("denominator 必须大于 0")
    return (2 * numerator + denominator) // (2 * denominator)


def apply_bps(amount_cents: int, bps: int) -> int:
    """金额乘以 bps 后四舍五入，例如 apply_bps(gross, 800) 为 8% 税"""
    return round_div(amount_cents * bps, BPS_TOTAL)


def percent_to_bps(percent) -> int:
    """
    百分比转 bps（保留两位小数）

    示例:
        >>> percent_to_bps(70)
        7000
        >>> percent_to_bps("33.335")
        3334
    """
    try:
        value = Decimal(str(percent).strip())
    except InvalidOperation:
        raise ValidationError(f"无效的百分比: {percent!r}", field="percent")
    if not value.is_finite():
        raise ValidationError(f"无效的百分比: {percent!r}", field="percent")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_by_bps(pool_cents: int, items: Sequence[Tuple[K, int]]) -> Dict[K, int]:
    """
    按 bps 拆分金额池，不丢失也不多出任何一分钱

    规则:
        1. 每项先取 floor(pool * bps / 10000)
        2. 尾差 pool - sum(floors) 全部归 bps 最大的一项；
           bps 相同时归输入顺序中靠前的一项
        3. items 为空时返回 {}，金额池不分配（由调用方处理）

    参数:
        pool_cents: 金额池（分），>= 0
        items: [(key, bps), ...]，重复的 key 会累加

    返回:
        {key: cents}，各值之和恰好等于 pool_cents（items 非空时）
    """
    if pool_cents < 0:
        raise ValidationError("金额池不能为负数", field="pool_cents")
    if not items:
        return {}

    out: Dict[K, int] = {}
    used = 0
    best_key, best_bps = items[0]
    for key, bps in items:
        if bps < 0:
            raise ValidationError(f"bps 不能为负数: {key}={bps}", field="bps")
        share = (pool_cents * bps) // BPS_TOTAL
        out[key] = out.get(key, 0) + share
        used += share
        if bps > best_bps:
            best_key, best_bps = key, bps

    residual = pool_cents - used
    if residual:
        out[best_key] += residual
    return out


def split_evenly(total_cents: int, keys: Iterable[K]) -> Dict[K, int]:
    """
    平均分配（VIP“其他员工”部分的规则）

    按 key 升序排序，每人 floor(total / n)，余数从排序第一位开始每人
    再加 1 分，直到分完。
    """
    ordered = sorted(set(keys))
    if not ordered:
        return {}
    total = max(0, total_cents)
    base, remainder = divmod(total, len(ordered))
    return {key: base + (1 if i < remainder else 0) for i, key in enumerate(ordered)}


def split_by_weights(
    total_cents: int,
    keys: Iterable[K],
    weights: Optional[Mapping[K, int]] = None,
) -> Dict[K, int]:
    """
    按权重分配（最大余数法）

    每人先取 floor(total * w / sum(w))，剩余的分按小数部分从大到小发放，
    小数部分相同时按 key 升序。权重全为 0 或未配置时退化为 split_evenly。
    """
    ordered = sorted(set(keys))
    total = max(0, total_cents)
    if not ordered:
        return {}

    clamped = {key: min(max(int((weights or {}).get(key) or 0), 0), 100_000_000) for key in ordered}
    sum_weights = sum(clamped.values())
    if sum_weights <= 0:
        return split_evenly(total, ordered)

    result: Dict[K, int] = {}
    fractions = []
    floor_sum = 0
    for key in ordered:
        share, rest = divmod(total * clamped[key], sum_weights)
        result[key] = share
        floor_sum += share
        fractions.append((rest, key))

    remainder = total - floor_sum
    # 分母相同，直接比较余数即可比较小数部分
    fractions.sort(key=lambda item: -item[0])
    for rest, key in fractions[:remainder]:
        result[key] += 1
    return result
