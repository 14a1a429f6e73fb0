"""
binvault/math/distribution.py
อัลกอริทึมกระจายสภาพคล่องลง Bin (Bin Distribution)

รับค่าสภาพคล่องที่ต้องการต่อ Bin (หน่วย Y) แล้วคำนวณ:
1. จำนวน Token X / Y ดิบของแต่ละ Bin
2. สัดส่วน (Distribution) ของแต่ละ Token ที่รวมกันได้ PRECISION พอดี

กฎสำคัญ: Bin ต่ำกว่า Active ถือ Y ล้วน, สูงกว่า Active ถือ X ล้วน
ส่วน Active Bin แบ่งตาม composition factor เพื่อไม่ให้วางเหรียญผิดฝั่ง (ซึ่งจะโดนค่า Swap ทันที)
"""

from dataclasses import dataclass
from typing import List, Sequence

from binvault.math.fixed_point import (
    MAX_UINT128,
    ONE,
    PRECISION,
    SCALE_OFFSET,
    mul_div_round_down,
    mul_shift_round_down,
    shift_div_round_down,
)
from binvault.utils.errors import DistributionOverflow, InvalidPercentage, InvalidPrice


@dataclass
class BinDistribution:
    """ผลลัพธ์ของการกระจายสภาพคล่อง"""
    amounts_x: List[int]
    amounts_y: List[int]
    distribution_x: List[int]
    distribution_y: List[int]
    total_x: int
    total_y: int


def get_amounts(desired_l: Sequence[int], composition_factor: int, price: int, active_index: int):
    """คำนวณจำนวน Token X/Y ต่อ Bin จาก desired_l (หน่วย Y)"""
    if price <= 0:
        raise InvalidPrice(f"price must be positive, got {price}")
    if composition_factor < 0 or composition_factor > ONE:
        raise InvalidPercentage(f"composition factor {composition_factor} is outside [0, ONE]")

    n = len(desired_l)
    amounts_x = [0] * n
    amounts_y = [0] * n

    for i, liquidity in enumerate(desired_l):
        if liquidity < 0:
            raise DistributionOverflow(f"desired liquidity at index {i} is negative: {liquidity}")

        if i < active_index:
            amounts_y[i] = liquidity
        elif i > active_index:
            amounts_x[i] = shift_div_round_down(liquidity, SCALE_OFFSET, price)
        else:
            amount_y = mul_shift_round_down(liquidity, composition_factor)
            amounts_y[i] = amount_y
            amounts_x[i] = shift_div_round_down(liquidity - amount_y, SCALE_OFFSET, price)

        if amounts_x[i] > MAX_UINT128 or amounts_y[i] > MAX_UINT128:
            raise DistributionOverflow(
                f"bin {i} resolves to ({amounts_x[i]}, {amounts_y[i]}), above uint128"
            )

    return amounts_x, amounts_y


def normalize(amounts: Sequence[int]) -> List[int]:
    """แปลงจำนวนเป็นสัดส่วนที่รวมได้ PRECISION พอดี (ศูนย์ทั้งหมดถ้ายอดรวมเป็นศูนย์)"""
    total = sum(amounts)
    if total == 0:
        return [0] * len(amounts)

    distribution = [mul_div_round_down(amount, PRECISION, total) for amount in amounts]

    # เศษจากการปัดลงไปลงที่ Bin สุดท้ายที่มียอด
    remainder = PRECISION - sum(distribution)
    if remainder:
        last = max(i for i, amount in enumerate(amounts) if amount > 0)
        distribution[last] += remainder
    return distribution


def get_distributions(
    desired_l: Sequence[int],
    composition_factor: int,
    price: int,
    active_index: int,
) -> BinDistribution:
    """จุดเข้าหลัก: คืนทั้งจำนวนดิบและสัดส่วนของทั้งสอง Token"""
    amounts_x, amounts_y = get_amounts(desired_l, composition_factor, price, active_index)
    return BinDistribution(
        amounts_x=amounts_x,
        amounts_y=amounts_y,
        distribution_x=normalize(amounts_x),
        distribution_y=normalize(amounts_y),
        total_x=sum(amounts_x),
        total_y=sum(amounts_y),
    )
