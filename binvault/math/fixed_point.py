"""
binvault/math/fixed_point.py
คณิตศาสตร์จำนวนเต็มแบบ Fixed-point สำหรับ Vault

- ราคา = Token Y ต่อ Token X ในรูปแบบ 128.128 (price * 2**128)
- ระบุทิศการปัดเศษเสมอ: ปัดลงสิ่งที่ผู้ใช้ได้รับ, ปัดขึ้นสิ่งที่เรียกเก็บจากผู้ใช้
"""

SCALE_OFFSET = 128
ONE = 1 << SCALE_OFFSET            # 1.0 ใน 128.128
HALF = 1 << (SCALE_OFFSET - 1)

PRECISION = 10 ** 18               # หน่วย "หนึ่ง" ของ Distribution และเปอร์เซ็นต์
BASIS_POINTS = 10_000
MAX_UINT128 = (1 << 128) - 1


def mul_div_round_down(x: int, y: int, denominator: int) -> int:
    if denominator == 0:
        raise ZeroDivisionError("mul_div_round_down: denominator is zero")
    if x == 0 or y == 0:
        return 0
    return (x * y) // denominator


def mul_div_round_up(x: int, y: int, denominator: int) -> int:
    if denominator == 0:
        raise ZeroDivisionError("mul_div_round_up: denominator is zero")
    if x == 0 or y == 0:
        return 0
    return (x * y + denominator - 1) // denominator


def mul_shift_round_down(x: int, y: int, offset: int = SCALE_OFFSET) -> int:
    """(x * y) >> offset"""
    return (x * y) >> offset


def mul_shift_round_up(x: int, y: int, offset: int = SCALE_OFFSET) -> int:
    result = (x * y) >> offset
    if (x * y) & ((1 << offset) - 1):
        result += 1
    return result


def shift_div_round_down(x: int, offset: int, denominator: int) -> int:
    """(x << offset) / denominator"""
    if denominator == 0:
        raise ZeroDivisionError("shift_div_round_down: denominator is zero")
    return (x << offset) // denominator


def shift_div_round_up(x: int, offset: int, denominator: int) -> int:
    if denominator == 0:
        raise ZeroDivisionError("shift_div_round_up: denominator is zero")
    return -((-(x << offset)) // denominator)


def value_in_y(price: int, amount_x: int, amount_y: int) -> int:
    """มูลค่ารวมในหน่วย Token Y (ปัดลง)"""
    return mul_shift_round_down(price, amount_x) + amount_y


def pow_128(base: int, exponent: int) -> int:
    """ยกกำลังเลข 128.128 ด้วย Exponent จำนวนเต็ม (Square-and-multiply)"""
    invert = exponent < 0
    exponent = abs(exponent)
    result = ONE
    squared = base
    while exponent:
        if exponent & 1:
            result = (result * squared) >> SCALE_OFFSET
        squared = (squared * squared) >> SCALE_OFFSET
        exponent >>= 1
    if invert:
        if result == 0:
            raise ZeroDivisionError("pow_128: result underflowed to zero")
        return (ONE << SCALE_OFFSET) // result
    return result


def to_float(price_128: int) -> float:
    """แปลงราคา 128.128 เป็น float (ใช้เพื่อรายงานผลเท่านั้น)"""
    return price_128 / ONE
