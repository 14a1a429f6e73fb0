"""
binvault/vault/rounds.py
บันทึกการถอนแบบเข้าคิว (Queued Withdrawal) แยกตามรอบ

แต่ละรอบเป็นเจ้าของ dict ของตัวเอง มีเพียงรอบสุดท้ายที่แก้ไขได้
เมื่อ Settle แล้ว ยอดรวม X/Y ของรอบจะไม่เปลี่ยนอีก
"""

from dataclasses import dataclass, field
from typing import Dict, Set, Tuple

from binvault.math.fixed_point import mul_div_round_down


@dataclass
class QueuedWithdrawalRound:
    total_queued_shares: int = 0
    user_withdrawals: Dict[str, int] = field(default_factory=dict)
    total_amount_x: int = 0
    total_amount_y: int = 0
    settled: bool = False
    redeemed: Set[str] = field(default_factory=set)

    def queued_of(self, user: str) -> int:
        """ยอด Share ที่ยังแลกได้ของผู้ใช้ (0 เมื่อแลกไปแล้ว)"""
        if user in self.redeemed:
            return 0
        return self.user_withdrawals.get(user, 0)

    def add(self, user: str, shares: int) -> None:
        self.user_withdrawals[user] = self.user_withdrawals.get(user, 0) + shares
        self.total_queued_shares += shares

    def remove(self, user: str, shares: int) -> None:
        remaining = self.user_withdrawals[user] - shares
        if remaining:
            self.user_withdrawals[user] = remaining
        else:
            del self.user_withdrawals[user]
        self.total_queued_shares -= shares

    def settle(self, amount_x: int, amount_y: int) -> None:
        self.total_amount_x = amount_x
        self.total_amount_y = amount_y
        self.settled = True

    def redeemable(self, user: str) -> Tuple[int, int]:
        shares = self.queued_of(user)
        if not self.settled or shares == 0:
            return 0, 0
        return (
            mul_div_round_down(self.total_amount_x, shares, self.total_queued_shares),
            mul_div_round_down(self.total_amount_y, shares, self.total_queued_shares),
        )
