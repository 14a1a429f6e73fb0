"""
binvault/strategy/strategy.py
Strategy - สมองการจัดการสภาพคล่องของ Vault

หน้าที่:
- ถือช่วง Bin ที่ใช้งาน (Idle <-> Active) และ Position ใน Pair
- rebalance: ถอนทั้งหมด -> คิดค่า AUM Fee -> Settle คิวถอนของ Vault -> ฝากใหม่ตาม Distribution
- คิดค่า AUM Fee รายปี (สูงสุดนับ 1 วันต่อครั้ง) และ Commit ค่า Fee ที่รอไว้หลังคำนวณเสร็จ
"""

import itertools
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from binvault.amm.pair import IPair
from binvault.math import range as bin_range
from binvault.math.distribution import BinDistribution, get_distributions
from binvault.math.fixed_point import (
    BASIS_POINTS,
    HALF,
    ONE,
    PRECISION,
    SCALE_OFFSET,
    mul_div_round_down,
    mul_div_round_up,
    shift_div_round_down,
    value_in_y,
)
from binvault.tokens.token import Token
from binvault.utils.errors import (
    ActiveIdSlippage,
    InsufficientBalance,
    InvalidFee,
    InvalidLength,
    InvalidPercentage,
    InvalidRange,
    InvalidRecipient,
    InvalidToken,
    RangeAlreadySet,
    RangeTooWide,
    SwapFailed,
    ZeroAmount,
)
from binvault.utils.guards import ZERO_ADDRESS, Capability, ReentrancyGuard, authorize, make_address, same_address
from binvault.utils.logger import get_logger

MAX_RANGE = 51
MAX_AUM_ANNUAL_FEE = 2_500             # 25% ใน Basis Points
ONE_DAY = 86_400
SCALED_YEAR = 365 * ONE_DAY * BASIS_POINTS

_strategy_ids = itertools.count()


class ISwapRouter(Protocol):
    address: str

    def swap(self, caller: str, token_in: Token, token_out: Token, receiver: str, amount_in: int,
             payload: bytes) -> int:
        ...


@dataclass
class StrategyConfig:
    """คอนฟิกเริ่มต้นของ Strategy"""
    operator: str
    fee_recipient: str
    aum_annual_fee: int = 0          # Basis Points


@dataclass
class DepositPlan:
    """ผลการตรวจสอบก่อนฝาก (คำนวณก่อนแตะสถานะใดๆ)"""
    lower: int
    upper: int
    active_id: int
    distribution: BinDistribution

    @property
    def bin_ids(self) -> List[int]:
        return list(range(self.lower, self.upper + 1))


class Strategy:

    def __init__(self, vault, factory: str, config: StrategyConfig,
                 clock: Callable[[], int] = None, address: str = None) -> None:
        if config.aum_annual_fee > MAX_AUM_ANNUAL_FEE:
            raise InvalidFee(f"annual fee {config.aum_annual_fee} bps above {MAX_AUM_ANNUAL_FEE}")

        self._vault = vault
        self._pair: IPair = vault.get_pair()
        self.factory = factory
        self.address = address or make_address(f"strategy:{vault.address}:{next(_strategy_ids)}")
        self._clock = clock or (lambda: int(time.time()))

        self._operator = config.operator
        self._fee_recipient = config.fee_recipient
        self._aum_annual_fee = config.aum_annual_fee
        self._pending_aum_annual_fee: Optional[int] = None
        self._range: Tuple[int, int] = bin_range.EMPTY
        self._last_rebalance = self._clock()

        self._guard = ReentrancyGuard("Strategy")
        self.logger = get_logger("Strategy")

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #
    def get_vault(self) -> str:
        return self._vault.address

    def get_pair(self) -> IPair:
        return self._pair

    def get_token_x(self) -> Token:
        return self._pair.token_x

    def get_token_y(self) -> Token:
        return self._pair.token_y

    def get_range(self) -> Tuple[int, int]:
        return self._range

    def get_operator(self) -> str:
        return self._operator

    def get_fee_recipient(self) -> str:
        return self._fee_recipient

    def get_aum_annual_fee(self) -> int:
        return self._aum_annual_fee

    def get_pending_aum_annual_fee(self) -> Tuple[bool, int]:
        """(ถูกตั้งไว้หรือไม่, ค่าที่รอ Commit)"""
        pending = self._pending_aum_annual_fee
        return pending is not None, pending or 0

    def get_last_rebalance(self) -> int:
        return self._last_rebalance

    def get_max_range(self) -> int:
        return MAX_RANGE

    def get_idle_balances(self) -> Tuple[int, int]:
        return self.get_token_x().balance_of(self.address), self.get_token_y().balance_of(self.address)

    def get_balances(self) -> Tuple[int, int]:
        """ยอดรวม = ยอดว่าง + ส่วนแบ่งใน Bin + ค่าธรรมเนียมที่ยังไม่เก็บ"""
        amount_x, amount_y = self.get_idle_balances()
        bin_ids = self._bin_ids()
        for bin_id in bin_ids:
            shares = self._pair.balance_of(self.address, bin_id)
            if shares == 0:
                continue
            reserve_x, reserve_y = self._pair.get_bin(bin_id)
            supply = self._pair.total_supply(bin_id)
            amount_x += mul_div_round_down(reserve_x, shares, supply)
            amount_y += mul_div_round_down(reserve_y, shares, supply)

        fee_x, fee_y = self._pair.pending_fees(self.address, bin_ids)
        return amount_x + fee_x, amount_y + fee_y

    # ------------------------------------------------------------------ #
    # Operator entry points
    # ------------------------------------------------------------------ #
    def rebalance(
        self,
        caller: str,
        new_lower: int,
        new_upper: int,
        desired_active_id: int,
        slippage_active_id: int,
        desired_l: Sequence[int],
        max_pct_x: int,
        max_pct_y: int,
    ) -> Tuple[int, int, int]:
        """
        ถอนทั้งหมดแล้ว (ถ้ามีพารามิเตอร์ฝาก) วางสภาพคล่องใหม่

        การตรวจสอบที่อาจล้มเหลวทั้งหมดทำก่อนแตะสถานะ หาก Error จะไม่มีอะไรเปลี่ยน

        Returns:
            (queued_shares ที่ Settle, amount_x ที่ฝาก, amount_y ที่ฝาก)
        """
        authorize(caller, Capability.OPERATOR, [self._operator, self.factory])
        with self._guard:
            withdraw_only = desired_active_id == 0 and slippage_active_id == 0 and len(desired_l) == 0
            plan = None
            if not withdraw_only:
                plan = self._plan_deposit(new_lower, new_upper, desired_active_id, slippage_active_id,
                                          desired_l, max_pct_x, max_pct_y)

            queued_shares, _, _ = self._withdraw_and_apply_aum_annual_fee()

            deposited_x = deposited_y = 0
            if plan is not None:
                deposited_x, deposited_y = self._deposit_to_pair(plan, max_pct_x, max_pct_y)

            self.logger.info(
                f"Rebalance done: range={self._range} settled_shares={queued_shares} "
                f"deposited=({deposited_x}, {deposited_y})"
            )
            return queued_shares, deposited_x, deposited_y

    def collect_fees(self, caller: str) -> Tuple[int, int]:
        """เก็บค่าธรรมเนียมจาก Pair เข้ามาเป็นยอดว่างของ Strategy"""
        authorize(caller, Capability.OPERATOR, [self._operator, self.factory])
        with self._guard:
            return self._collect_fees(self._bin_ids())

    def swap(self, caller: str, router: ISwapRouter, token_in: Token, token_out: Token, receiver: str,
             amount_in: int, payload: bytes = b"") -> int:
        """ปรับสัดส่วน X/Y ผ่าน Router ภายนอก (ตรวจเพียง Token ปลายทางและผู้รับ)"""
        authorize(caller, Capability.OPERATOR, [self._operator, self.factory])
        with self._guard:
            token_x, token_y = self.get_token_x(), self.get_token_y()
            if same_address(token_out.address, token_x.address):
                expected_in = token_y
            elif same_address(token_out.address, token_y.address):
                expected_in = token_x
            else:
                raise InvalidToken(f"{token_out.address} is neither token X nor token Y")
            if not same_address(token_in.address, expected_in.address):
                raise InvalidToken(f"{token_in.address} must be the other token of the pair")
            if not same_address(receiver, self.address):
                raise InvalidRecipient(f"swap receiver must be the strategy, got {receiver}")
            if amount_in <= 0:
                raise ZeroAmount("swap amount must be positive")
            if token_in.balance_of(self.address) < amount_in:
                raise InsufficientBalance(f"strategy holds {token_in.balance_of(self.address)}, swaps {amount_in}")

            balance_before = token_out.balance_of(self.address)
            token_in.approve(self.address, router.address, amount_in)
            try:
                router.swap(self.address, token_in, token_out, receiver, amount_in, payload)
            except Exception as e:
                self.logger.warning(f"Swap through router {router.address} failed: {e}")
                raise SwapFailed(f"router {router.address} failed: {e}") from e
            finally:
                token_in.approve(self.address, router.address, 0)

            received = token_out.balance_of(self.address) - balance_before
            if received <= 0:
                self.logger.warning(f"Router {router.address} returned nothing for {amount_in} {token_in.symbol}")
                raise SwapFailed(f"router {router.address} returned nothing")

            self.logger.info(f"Swap {amount_in} {token_in.symbol} -> {received} {token_out.symbol}")
            return received

    # ------------------------------------------------------------------ #
    # Vault entry point
    # ------------------------------------------------------------------ #
    def withdraw_all(self, caller: str) -> None:
        """ถอนทั้งหมดแล้วส่งยอดว่างทุกเหรียญคืน Vault (ใช้ตอนย้าย Strategy / โหมดฉุกเฉิน)"""
        authorize(caller, Capability.VAULT, [self._vault.address])
        with self._guard:
            self._withdraw_and_apply_aum_annual_fee()

            balance_x, balance_y = self.get_idle_balances()
            if balance_x:
                self.get_token_x().transfer(self.address, self._vault.address, balance_x)
            if balance_y:
                self.get_token_y().transfer(self.address, self._vault.address, balance_y)
            self.logger.info(f"Withdraw all to vault: x={balance_x} y={balance_y}")

    # ------------------------------------------------------------------ #
    # Owner (factory) controls
    # ------------------------------------------------------------------ #
    def set_operator(self, caller: str, operator: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        self._operator = operator
        self.logger.info(f"Operator set: {operator}")

    def set_fee_recipient(self, caller: str, fee_recipient: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        if not fee_recipient or fee_recipient == ZERO_ADDRESS:
            raise InvalidRecipient("fee recipient cannot be the zero address")
        self._fee_recipient = fee_recipient

    def set_pending_aum_annual_fee(self, caller: str, pending_fee: int) -> None:
        """ตั้งค่า Fee ใหม่แบบรอไว้ จะมีผลตอน rebalance ครั้งถัดไปหลังคิดค่า Fee เดิมเสร็จ"""
        authorize(caller, Capability.OWNER, [self.factory])
        if pending_fee < 0 or pending_fee > MAX_AUM_ANNUAL_FEE:
            raise InvalidFee(f"annual fee {pending_fee} bps above {MAX_AUM_ANNUAL_FEE}")
        self._pending_aum_annual_fee = pending_fee
        self.logger.info(f"Pending AUM annual fee set: {pending_fee} bps")

    def reset_pending_aum_annual_fee(self, caller: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        self._pending_aum_annual_fee = None

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _bin_ids(self) -> List[int]:
        lower, upper = self._range
        if bin_range.is_empty(lower, upper):
            return []
        return list(range(lower, upper + 1))

    def _plan_deposit(self, new_lower: int, new_upper: int, desired_active_id: int, slippage_active_id: int,
                      desired_l: Sequence[int], max_pct_x: int, max_pct_y: int) -> DepositPlan:
        if max_pct_x < 0 or max_pct_x > PRECISION or max_pct_y < 0 or max_pct_y > PRECISION:
            raise InvalidPercentage(f"max percentages ({max_pct_x}, {max_pct_y}) above {PRECISION}")

        active_id = self._pair.get_active_id()
        new_lower, new_upper = self._adjust_range(new_lower, new_upper, desired_active_id,
                                                  slippage_active_id, active_id)

        width = new_upper - new_lower + 1
        if width > MAX_RANGE:
            self.logger.warning(f"Rebalance rejected: range [{new_lower}, {new_upper}] spans {width} bins")
            raise RangeTooWide(f"range [{new_lower}, {new_upper}] spans {width} bins, max {MAX_RANGE}")
        if len(desired_l) != width:
            raise InvalidLength(f"{len(desired_l)} liquidity values for {width} bins")

        price = self._pair.get_price_from_id(active_id)
        composition_factor = self._composition_factor(active_id, price)
        distribution = get_distributions(desired_l, composition_factor, price, active_id - new_lower)
        return DepositPlan(new_lower, new_upper, active_id, distribution)

    def _adjust_range(self, new_lower: int, new_upper: int, desired_active_id: int, slippage_active_id: int,
                      active_id: int) -> Tuple[int, int]:
        """เลื่อนช่วงตามระยะที่ Active Id ขยับไปจากที่ตั้งใจ (ไม่เกิน slippage)"""
        delta = abs(active_id - desired_active_id)
        if delta > slippage_active_id:
            self.logger.warning(
                f"Rebalance rejected: active id moved {delta} bins (tolerance {slippage_active_id})"
            )
            raise ActiveIdSlippage(
                f"active id {active_id} is {delta} bins from desired {desired_active_id}, "
                f"tolerance {slippage_active_id}"
            )
        if active_id > desired_active_id:
            new_lower, new_upper = new_lower + delta, new_upper + delta
        else:
            new_lower, new_upper = new_lower - delta, new_upper - delta

        if new_lower <= 0 or new_lower > new_upper:
            self.logger.warning(f"Rebalance rejected: invalid range [{new_lower}, {new_upper}]")
            raise InvalidRange(f"invalid range [{new_lower}, {new_upper}]")
        return new_lower, new_upper

    def _composition_factor(self, active_id: int, price: int) -> int:
        """สัดส่วนมูลค่าฝั่ง Y ใน Active Bin (128.128) ครึ่งหนึ่งถ้า Bin ว่าง"""
        reserve_x, reserve_y = self._pair.get_bin(active_id)
        total = value_in_y(price, reserve_x, reserve_y)
        if total == 0:
            return HALF
        return min(shift_div_round_down(reserve_y, SCALE_OFFSET, total), ONE)

    def _deposit_to_pair(self, plan: DepositPlan, max_pct_x: int, max_pct_y: int) -> Tuple[int, int]:
        idle_x, idle_y = self.get_idle_balances()
        dist = plan.distribution
        amount_x = min(dist.total_x, mul_div_round_down(idle_x, max_pct_x, PRECISION))
        amount_y = min(dist.total_y, mul_div_round_down(idle_y, max_pct_y, PRECISION))
        if amount_x == 0 and amount_y == 0:
            self.logger.info("Nothing to deposit, strategy stays idle")
            return 0, 0

        self._set_range(plan.lower, plan.upper)

        if amount_x:
            self.get_token_x().transfer(self.address, self._pair.address, amount_x)
        if amount_y:
            self.get_token_y().transfer(self.address, self._pair.address, amount_y)
        added_x, added_y, _ = self._pair.mint(plan.bin_ids, dist.distribution_x, dist.distribution_y, self.address)

        self.logger.info(
            f"Deposited into [{plan.lower}, {plan.upper}] around active {plan.active_id}: x={added_x} y={added_y}"
        )
        return added_x, added_y

    def _set_range(self, lower: int, upper: int) -> None:
        current_lower, current_upper = self._range
        if not bin_range.is_empty(current_lower, current_upper):
            raise RangeAlreadySet(f"range [{current_lower}, {current_upper}] is still active")
        self._range = bin_range.expand(current_lower, current_upper, lower, upper)

    def _reset_range(self) -> None:
        lower, upper = self._range
        self._range = bin_range.shrink(lower, upper, lower, upper)

    def _collect_fees(self, bin_ids: List[int]) -> Tuple[int, int]:
        fee_x, fee_y = self._pair.pending_fees(self.address, bin_ids)
        if fee_x == 0 and fee_y == 0:
            return 0, 0
        collected = self._pair.collect_fees(self.address, bin_ids)
        self.logger.info(f"Collected pair fees: x={collected[0]} y={collected[1]}")
        return collected

    def _withdraw_and_apply_aum_annual_fee(self) -> Tuple[int, int, int]:
        """
        ถอนทั้งหมด, คิด AUM Fee, Commit Fee ที่รอ, แล้ว Settle คิวถอนของ Vault

        Returns:
            (queued_shares, queued_amount_x, queued_amount_y) ที่ส่งให้ Vault
        """
        bin_ids = self._bin_ids()
        self._collect_fees(bin_ids)

        if bin_ids:
            amounts = [self._pair.balance_of(self.address, bin_id) for bin_id in bin_ids]
            burn_ids = [bin_id for bin_id, amount in zip(bin_ids, amounts) if amount > 0]
            burn_amounts = [amount for amount in amounts if amount > 0]
            if burn_ids:
                self._pair.burn(burn_ids, burn_amounts, self.address)
            self._reset_range()

        total_x, total_y = self.get_idle_balances()
        queued_shares = self._vault.get_current_total_queued_withdrawal()
        total_shares = self._vault.total_supply()

        now = self._clock()
        last_rebalance = self._last_rebalance
        self._last_rebalance = now

        fee_x = fee_y = 0
        annual_fee = self._aum_annual_fee
        if annual_fee > 0 and now > last_rebalance and total_shares > 0:
            duration = min(now - last_rebalance, ONE_DAY)
            fee_x = mul_div_round_up(total_x, annual_fee * duration, SCALED_YEAR)
            fee_y = mul_div_round_up(total_y, annual_fee * duration, SCALED_YEAR)
            if fee_x:
                self.get_token_x().transfer(self.address, self._fee_recipient, fee_x)
            if fee_y:
                self.get_token_y().transfer(self.address, self._fee_recipient, fee_y)
            self.logger.info(f"AUM fee charged for {duration}s at {annual_fee} bps: x={fee_x} y={fee_y}")

        if self._pending_aum_annual_fee is not None:
            self._aum_annual_fee = self._pending_aum_annual_fee
            self._pending_aum_annual_fee = None
            self.logger.info(f"AUM annual fee committed: {self._aum_annual_fee} bps")

        if queued_shares == 0:
            return 0, 0, 0

        # ผู้รอถอนรับภาระ Fee ตามสัดส่วนของตัวเอง
        queued_x = max(0, mul_div_round_down(total_x, queued_shares, total_shares)
                       - mul_div_round_up(fee_x, queued_shares, total_shares))
        queued_y = max(0, mul_div_round_down(total_y, queued_shares, total_shares)
                       - mul_div_round_up(fee_y, queued_shares, total_shares))

        if queued_x:
            self.get_token_x().transfer(self.address, self._vault.address, queued_x)
        if queued_y:
            self.get_token_y().transfer(self.address, self._vault.address, queued_y)
        self._vault.execute_queued_withdrawals(self.address)

        return queued_shares, queued_x, queued_y
