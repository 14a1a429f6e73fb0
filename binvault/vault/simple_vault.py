"""
binvault/vault/simple_vault.py
SimpleVault - ตั้งราคา Share ตามสัดส่วน X:Y ของ Pool (ไม่ใช้ Oracle)

ผู้ฝากต้องฝากตามสัดส่วนเดิมของ Pool: ยอดที่ใช้จริงคำนวณจาก cross = min(x*TY, y*TX)
เพื่อไม่ให้ใครเลื่อนสัดส่วน Pool ได้ฟรี
"""

from typing import Tuple

from binvault.math.fixed_point import mul_div_round_down
from binvault.utils.errors import ZeroCross
from binvault.vault.base_vault import BaseVault


class SimpleVault(BaseVault):

    def _preview_shares(self, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        if amount_x == 0 and amount_y == 0:
            return 0, 0, 0

        total_shares = self.total_supply()
        if total_shares == 0:
            return max(amount_x, amount_y) * self.SHARES_PRECISION, amount_x, amount_y

        total_x, total_y = self.get_balances()

        if total_x > 0 and total_y == 0:
            return mul_div_round_down(amount_x, total_shares, total_x), amount_x, 0
        if total_x == 0 and total_y > 0:
            return mul_div_round_down(amount_y, total_shares, total_y), 0, amount_y
        if total_x == 0 and total_y == 0:
            raise ZeroCross("shares are outstanding but the pool holds no tokens")

        cross = min(amount_x * total_y, amount_y * total_x)
        if cross == 0:
            raise ZeroCross(f"deposit ({amount_x}, {amount_y}) does not match the pool ratio")

        # ปัดขึ้นยอดที่ดึงจากผู้ฝาก ปัดลง Share ที่ให้
        effective_x = (cross - 1) // total_y + 1
        effective_y = (cross - 1) // total_x + 1
        shares = mul_div_round_down(cross, total_shares, total_x * total_y)
        return shares, effective_x, effective_y
