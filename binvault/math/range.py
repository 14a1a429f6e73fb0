"""
binvault/math/range.py
ฟังก์ชันบริสุทธิ์สำหรับช่วง Bin ที่ใช้งาน [lower, upper]

ข้อตกลง: upper == 0 หมายถึง "ไม่มีช่วง" (ถอนสภาพคล่องออกหมดแล้ว)
"""

from typing import Tuple

from binvault.utils.errors import InvalidAddedRange, InvalidRange, InvalidRemovedRange

EMPTY: Tuple[int, int] = (0, 0)


def is_empty(lower: int, upper: int) -> bool:
    return upper == 0


def width(lower: int, upper: int) -> int:
    """จำนวน Bin ในช่วง (0 สำหรับช่วงว่าง)"""
    if is_empty(lower, upper):
        return 0
    _check(lower, upper)
    return upper - lower + 1


def contains(lower: int, upper: int, value: int) -> bool:
    _check(lower, upper)
    return lower <= value <= upper


def expand(lower: int, upper: int, added_lower: int, added_upper: int) -> Tuple[int, int]:
    """
    รวมช่วงที่เพิ่มเข้ากับช่วงปัจจุบัน

    ช่วงที่เพิ่มต้องซ้อนทับ อยู่ภายใน หรือติดกันพอดีกับช่วงเดิม
    ถ้าช่วงปัจจุบันว่าง จะคืนช่วงที่เพิ่มตามเดิม
    """
    _check(added_lower, added_upper)
    if is_empty(lower, upper):
        return added_lower, added_upper

    _check(lower, upper)
    if added_lower > upper + 1 or added_upper + 1 < lower:
        raise InvalidAddedRange(
            f"added [{added_lower}, {added_upper}] leaves a gap with [{lower}, {upper}]"
        )
    return min(lower, added_lower), max(upper, added_upper)


def shrink(lower: int, upper: int, removed_lower: int, removed_upper: int) -> Tuple[int, int]:
    """
    ตัดช่วงย่อยที่ชนขอบด้านใดด้านหนึ่งออก

    ตัดทั้งช่วงจะได้ช่วงว่าง (0, 0) ส่วนการตัดตรงกลาง (ไม่ชนขอบ) ไม่อนุญาต
    """
    _check(lower, upper)
    _check(removed_lower, removed_upper)
    if removed_lower < lower or removed_upper > upper:
        raise InvalidRemovedRange(
            f"removed [{removed_lower}, {removed_upper}] is outside [{lower}, {upper}]"
        )

    if removed_lower == lower and removed_upper == upper:
        return EMPTY
    if removed_lower == lower:
        return removed_upper + 1, upper
    if removed_upper == upper:
        return lower, removed_lower - 1

    raise InvalidRemovedRange(
        f"removed [{removed_lower}, {removed_upper}] touches no edge of [{lower}, {upper}]"
    )


def _check(lower: int, upper: int) -> None:
    if lower > upper:
        raise InvalidRange(f"lower {lower} > upper {upper}")
