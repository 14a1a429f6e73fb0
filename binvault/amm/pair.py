"""
binvault/amm/pair.py
อินเทอร์เฟซ Pair แบบ Bin (Concentrated Liquidity) และตัวจำลองในหน่วยความจำ

Strategy ใช้เพียงส่วนต่อประสาน (mint/burn/fees/active id/bin) เท่านั้น
InMemoryPair เป็นสมุดบัญชี Bin แบบย่อสำหรับงานจำลองและการทดสอบ ไม่มีระบบ Swap ภายใน
"""

from typing import Dict, List, Protocol, Sequence, Tuple

from binvault.math.fixed_point import (
    BASIS_POINTS,
    ONE,
    PRECISION,
    SCALE_OFFSET,
    mul_div_round_down,
    pow_128,
    value_in_y,
)
from binvault.tokens.token import Token
from binvault.utils.errors import InsufficientBalance, InvalidLength, InvalidPercentage, ZeroAmount
from binvault.utils.guards import make_address
from binvault.utils.logger import get_logger

REAL_ID_SHIFT = 1 << 23


class IPair(Protocol):
    """ส่วนต่อประสานที่ Strategy เรียกใช้จาก Pair"""
    address: str
    token_x: Token
    token_y: Token

    def get_active_id(self) -> int:
        ...

    def get_bin(self, bin_id: int) -> Tuple[int, int]:
        ...

    def get_price_from_id(self, bin_id: int) -> int:
        ...

    def balance_of(self, account: str, bin_id: int) -> int:
        ...

    def total_supply(self, bin_id: int) -> int:
        ...

    def mint(self, bin_ids: Sequence[int], distribution_x: Sequence[int], distribution_y: Sequence[int],
             recipient: str) -> Tuple[int, int, List[int]]:
        ...

    def burn(self, bin_ids: Sequence[int], amounts: Sequence[int], recipient: str) -> Tuple[int, int]:
        ...

    def pending_fees(self, account: str, bin_ids: Sequence[int]) -> Tuple[int, int]:
        ...

    def collect_fees(self, account: str, bin_ids: Sequence[int]) -> Tuple[int, int]:
        ...


class InMemoryPair:
    """สมุดบัญชี Bin: สำรองต่อ Bin + ส่วนแบ่ง (Share) ของแต่ละบัญชีต่อ Bin"""

    def __init__(self, token_x: Token, token_y: Token, bin_step: int = 25, active_id: int = REAL_ID_SHIFT,
                 address: str = None) -> None:
        self.token_x = token_x
        self.token_y = token_y
        self.bin_step = bin_step
        self.address = address or make_address(f"pair:{token_x.symbol}-{token_y.symbol}-{bin_step}")
        self._active_id = active_id

        self._bins: Dict[int, List[int]] = {}                 # id -> [reserve_x, reserve_y]
        self._supply: Dict[int, int] = {}                     # id -> total shares
        self._shares: Dict[Tuple[str, int], int] = {}         # (account, id) -> shares
        self._fees: Dict[str, List[int]] = {}                 # account -> [fee_x, fee_y]
        self._reserve_x = 0
        self._reserve_y = 0
        self._fee_reserve_x = 0
        self._fee_reserve_y = 0

        self.logger = get_logger("InMemoryPair")

    # --- Views ---
    def get_active_id(self) -> int:
        return self._active_id

    def get_bin(self, bin_id: int) -> Tuple[int, int]:
        reserve_x, reserve_y = self._bins.get(bin_id, [0, 0])
        return reserve_x, reserve_y

    def get_price_from_id(self, bin_id: int) -> int:
        """ราคา 128.128 ของ Bin: (1 + bin_step / 10_000) ** (id - 2**23)"""
        base = ONE + (self.bin_step << SCALE_OFFSET) // BASIS_POINTS
        return pow_128(base, bin_id - REAL_ID_SHIFT)

    def balance_of(self, account: str, bin_id: int) -> int:
        return self._shares.get((account, bin_id), 0)

    def total_supply(self, bin_id: int) -> int:
        return self._supply.get(bin_id, 0)

    def pending_fees(self, account: str, bin_ids: Sequence[int]) -> Tuple[int, int]:
        fee_x, fee_y = self._fees.get(account, [0, 0])
        return fee_x, fee_y

    # --- Simulation controls ---
    def set_active_id(self, bin_id: int) -> None:
        self._active_id = bin_id

    def accrue_fees(self, account: str, fee_x: int, fee_y: int) -> None:
        """บันทึกค่าธรรมเนียมที่บัญชีได้รับ (เหรียญถูกเติมเข้า Pair ตามจริง)"""
        self.token_x.mint(self.address, fee_x)
        self.token_y.mint(self.address, fee_y)
        fees = self._fees.setdefault(account, [0, 0])
        fees[0] += fee_x
        fees[1] += fee_y
        self._fee_reserve_x += fee_x
        self._fee_reserve_y += fee_y

    # --- Liquidity ---
    def mint(self, bin_ids: Sequence[int], distribution_x: Sequence[int], distribution_y: Sequence[int],
             recipient: str) -> Tuple[int, int, List[int]]:
        """
        ฝากเหรียญที่ถูกโอนเข้ามาก่อนหน้า (ยอดเกินสำรอง) ลง Bin ตามสัดส่วน

        Returns:
            (amount_x_added, amount_y_added, liquidity_minted ต่อ Bin)
        """
        if not (len(bin_ids) == len(distribution_x) == len(distribution_y)) or not bin_ids:
            raise InvalidLength("bin ids and distributions must share a nonzero length")
        if sum(distribution_x) > PRECISION or sum(distribution_y) > PRECISION:
            raise InvalidPercentage("distribution sums above PRECISION")

        received_x = self.token_x.balance_of(self.address) - self._reserve_x - self._fee_reserve_x
        received_y = self.token_y.balance_of(self.address) - self._reserve_y - self._fee_reserve_y
        if received_x == 0 and received_y == 0:
            raise ZeroAmount("nothing was sent to the pair before mint")

        used_x = used_y = 0
        minted: List[int] = []
        for bin_id, dist_x, dist_y in zip(bin_ids, distribution_x, distribution_y):
            amount_x = mul_div_round_down(received_x, dist_x, PRECISION)
            amount_y = mul_div_round_down(received_y, dist_y, PRECISION)
            minted.append(self._add_to_bin(recipient, bin_id, amount_x, amount_y))
            used_x += amount_x
            used_y += amount_y

        self._reserve_x += used_x
        self._reserve_y += used_y

        # ส่วนที่ไม่ได้ใช้คืนให้ผู้รับ
        if received_x > used_x:
            self.token_x.transfer(self.address, recipient, received_x - used_x)
        if received_y > used_y:
            self.token_y.transfer(self.address, recipient, received_y - used_y)

        return used_x, used_y, minted

    def burn(self, bin_ids: Sequence[int], amounts: Sequence[int], recipient: str) -> Tuple[int, int]:
        """ถอนส่วนแบ่งของผู้รับ (recipient เป็นเจ้าของ Share) ออกจาก Bin แบบ Pro-rata"""
        if len(bin_ids) != len(amounts):
            raise InvalidLength("bin ids and amounts length mismatch")

        total_x = total_y = 0
        for bin_id, amount in zip(bin_ids, amounts):
            if amount == 0:
                continue
            key = (recipient, bin_id)
            shares = self._shares.get(key, 0)
            if shares < amount:
                raise InsufficientBalance(f"{recipient} owns {shares} shares in bin {bin_id}, burns {amount}")

            supply = self._supply[bin_id]
            reserves = self._bins[bin_id]
            out_x = mul_div_round_down(reserves[0], amount, supply)
            out_y = mul_div_round_down(reserves[1], amount, supply)

            reserves[0] -= out_x
            reserves[1] -= out_y
            self._supply[bin_id] = supply - amount
            self._shares[key] = shares - amount
            total_x += out_x
            total_y += out_y

        self._reserve_x -= total_x
        self._reserve_y -= total_y
        if total_x:
            self.token_x.transfer(self.address, recipient, total_x)
        if total_y:
            self.token_y.transfer(self.address, recipient, total_y)
        return total_x, total_y

    def collect_fees(self, account: str, bin_ids: Sequence[int]) -> Tuple[int, int]:
        fee_x, fee_y = self._fees.pop(account, [0, 0])
        self._fee_reserve_x -= fee_x
        self._fee_reserve_y -= fee_y
        if fee_x:
            self.token_x.transfer(self.address, account, fee_x)
        if fee_y:
            self.token_y.transfer(self.address, account, fee_y)
        return fee_x, fee_y

    def _add_to_bin(self, account: str, bin_id: int, amount_x: int, amount_y: int) -> int:
        if amount_x == 0 and amount_y == 0:
            return 0
        price = self.get_price_from_id(bin_id)
        liquidity = value_in_y(price, amount_x, amount_y)

        reserves = self._bins.setdefault(bin_id, [0, 0])
        supply = self._supply.get(bin_id, 0)
        bin_liquidity = value_in_y(price, reserves[0], reserves[1])
        shares = liquidity if supply == 0 or bin_liquidity == 0 else mul_div_round_down(liquidity, supply, bin_liquidity)

        reserves[0] += amount_x
        reserves[1] += amount_y
        self._supply[bin_id] = supply + shares
        self._shares[(account, bin_id)] = self.balance_of(account, bin_id) + shares
        return shares
