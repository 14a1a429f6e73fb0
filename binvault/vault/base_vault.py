"""
binvault/vault/base_vault.py
BaseVault - สมุดบัญชี Share และระบบถอนแบบเข้าคิวตามรอบ (Round-based Queued Withdrawal)

หน้าที่:
- ออก/เผา Share ของ Vault (รวม Share ขั้นต่ำที่ Vault ถือไว้ถาวรตอน Mint ครั้งแรก)
- รับคำขอถอนเข้ารอบปัจจุบัน, ยกเลิก, Settle (เรียกโดย Strategy เท่านั้น) และแลกคืน
- โหมดฉุกเฉิน: ถอด Strategy แล้วให้ผู้ถือ Share ถอนตรงจากยอดที่ Vault ถือ

การตั้งราคา Share ถูกแยกไปที่คลาสลูก (SimpleVault / OracleVault) ผ่าน _preview_shares
"""

import itertools
from typing import List, Optional, Tuple

import pandas as pd

from binvault.math.fixed_point import mul_div_round_down
from binvault.tokens.token import FungibleLedger, Token
from binvault.utils.errors import (
    AlreadyInitialized,
    DepositsPaused,
    InsufficientAllowance,
    InsufficientBalance,
    InsufficientQueuedShares,
    InvalidNativeAmount,
    InvalidRecipient,
    InvalidRound,
    InvalidShares,
    InvalidStrategy,
    InvalidToken,
    NativeTransferFailed,
    NoNativeToken,
    NoQueuedWithdrawal,
    NotInEmergencyMode,
    SameStrategy,
    ZeroAmount,
    ZeroShares,
)
from binvault.utils.guards import ZERO_ADDRESS, Capability, ReentrancyGuard, authorize, make_address, same_address
from binvault.utils.logger import get_logger
from binvault.vault.config import VaultConfig
from binvault.vault.rounds import QueuedWithdrawalRound

_vault_ids = itertools.count()


class BaseVault(FungibleLedger):
    SHARES_PRECISION = 10 ** 6
    MINIMUM_SHARES = 10 ** 6

    def __init__(self, config: VaultConfig, factory: str, address: str = None) -> None:
        super().__init__(decimals=max(config.decimals_x, config.decimals_y) + 6)
        self.config = config
        self.factory = factory
        self.address = address or make_address(f"vault:{config.pair.address}:{next(_vault_ids)}")

        self._initialized = False
        self._strategy = None
        self._deposits_paused = False
        self._rounds: List[QueuedWithdrawalRound] = [QueuedWithdrawalRound()]

        # ยอดที่ Settle แล้วแต่ผู้ใช้ยังไม่แลกคืน (Vault ถือแทนไว้)
        self._total_amount_x = 0
        self._total_amount_y = 0

        self._guard = ReentrancyGuard(self.__class__.__name__)
        self.logger = get_logger(self.__class__.__name__)

    # ------------------------------------------------------------------ #
    # Setup
    # ------------------------------------------------------------------ #
    def initialize(self, caller: str, name: str, symbol: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        if self._initialized:
            raise AlreadyInitialized(f"{self.name} is already initialized")
        self._initialized = True
        self.name = name
        self.symbol = symbol

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #
    @property
    def token_x(self) -> Token:
        return self.config.token_x

    @property
    def token_y(self) -> Token:
        return self.config.token_y

    def get_pair(self):
        return self.config.pair

    def get_strategy(self):
        return self._strategy

    def is_deposits_paused(self) -> bool:
        return self._deposits_paused

    def get_range(self) -> Tuple[int, int]:
        return self._strategy.get_range() if self._strategy else (0, 0)

    def get_aum_annual_fee(self) -> int:
        return self._strategy.get_aum_annual_fee() if self._strategy else 0

    def get_operator(self) -> Optional[str]:
        return self._strategy.get_operator() if self._strategy else None

    def get_balances(self) -> Tuple[int, int]:
        """ยอดรวมที่หนุน Share อยู่ (ไม่รวมยอดที่ Settle รอแลกคืน)"""
        if self._strategy is not None:
            return self._strategy.get_balances()
        return self._idle_balances()

    def get_current_round(self) -> int:
        return len(self._rounds) - 1

    def get_queued_withdrawal(self, round_id: int, user: str) -> int:
        if round_id < 0 or round_id >= len(self._rounds):
            return 0
        return self._rounds[round_id].queued_of(user)

    def get_total_queued_withdrawal(self, round_id: int) -> int:
        if round_id < 0 or round_id >= len(self._rounds):
            return 0
        return self._rounds[round_id].total_queued_shares

    def get_current_total_queued_withdrawal(self) -> int:
        return self._rounds[-1].total_queued_shares

    def get_redeemable_amounts(self, round_id: int, user: str) -> Tuple[int, int]:
        if round_id < 0 or round_id >= self.get_current_round():
            return 0, 0
        return self._rounds[round_id].redeemable(user)

    def get_round(self, round_id: int) -> QueuedWithdrawalRound:
        if round_id < 0 or round_id >= len(self._rounds):
            raise InvalidRound(f"round {round_id} does not exist")
        return self._rounds[round_id]

    def preview_shares(self, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        """คืน (shares, effective_x, effective_y) โดย effective ไม่เกินยอดที่เสนอ"""
        return self._preview_shares(amount_x, amount_y)

    def preview_amounts(self, shares: int) -> Tuple[int, int]:
        """มูลค่า Token X/Y ของ Share จำนวนหนึ่ง (ปัดลง)"""
        if shares == 0:
            return 0, 0
        total_shares = self.total_supply()
        if shares > total_shares:
            raise InvalidShares(f"{shares} shares exceed total supply {total_shares}")
        total_x, total_y = self.get_balances()
        return (
            mul_div_round_down(total_x, shares, total_shares),
            mul_div_round_down(total_y, shares, total_shares),
        )

    def rounds_frame(self) -> pd.DataFrame:
        """สรุปสมุดรอบการถอนเป็น DataFrame (ใช้ทำรายงาน)"""
        rows = []
        for idx, rnd in enumerate(self._rounds):
            rows.append({
                'round': idx,
                'total_queued_shares': rnd.total_queued_shares,
                'holders': len(rnd.user_withdrawals),
                'redeemed': len(rnd.redeemed),
                'total_amount_x': rnd.total_amount_x,
                'total_amount_y': rnd.total_amount_y,
                'settled': rnd.settled,
            })
        return pd.DataFrame(rows, columns=['round', 'total_queued_shares', 'holders', 'redeemed',
                                           'total_amount_x', 'total_amount_y', 'settled'])

    # ------------------------------------------------------------------ #
    # Pricing hook
    # ------------------------------------------------------------------ #
    def _preview_shares(self, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        raise NotImplementedError

    # ------------------------------------------------------------------ #
    # Deposits
    # ------------------------------------------------------------------ #
    def deposit(self, caller: str, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        """ฝาก Token X/Y แล้วรับ Share คืน (shares, effective_x, effective_y)"""
        with self._guard:
            strategy = self._check_deposit(amount_x, amount_y)
            shares, effective_x, effective_y = self._compute_shares(amount_x, amount_y)

            self._check_pull(self.token_x, caller, effective_x)
            self._check_pull(self.token_y, caller, effective_y)

            shares = self._mint_shares(caller, shares)

            if effective_x:
                self.token_x.transfer_from(self.address, caller, strategy.address, effective_x)
            if effective_y:
                self.token_y.transfer_from(self.address, caller, strategy.address, effective_y)

            self.logger.info(f"Deposit by {caller}: shares={shares} x={effective_x} y={effective_y}")
            return shares, effective_x, effective_y

    def deposit_native(self, caller: str, amount_x: int, amount_y: int, value: int) -> Tuple[int, int, int]:
        """ฝากโดยฝั่งหนึ่งเป็นเหรียญ Native (ห่อให้อัตโนมัติ และคืนเงินส่วนเกิน)"""
        with self._guard:
            wnative = self.config.wnative
            if wnative is None:
                raise NoNativeToken("vault has no wrapped native token configured")
            native_is_x = same_address(wnative.address, self.token_x.address)
            if not native_is_x and not same_address(wnative.address, self.token_y.address):
                raise NoNativeToken("wrapped native token is neither token X nor token Y")

            native_amount = amount_x if native_is_x else amount_y
            if value != native_amount:
                raise InvalidNativeAmount(f"sent {value} native, declared {native_amount}")

            strategy = self._check_deposit(amount_x, amount_y)
            shares, effective_x, effective_y = self._compute_shares(amount_x, amount_y)

            token_in, effective_in = (self.token_y, effective_y) if native_is_x else (self.token_x, effective_x)
            effective_native = effective_x if native_is_x else effective_y
            self._check_pull(token_in, caller, effective_in)
            if wnative.native_balance_of(caller) < value:
                raise NativeTransferFailed(f"{caller} cannot send {value} native")

            shares = self._mint_shares(caller, shares)

            wnative.send_native(caller, self.address, value)
            if effective_native:
                wnative.deposit(self.address, effective_native)
                wnative.transfer(self.address, strategy.address, effective_native)
            if effective_in:
                token_in.transfer_from(self.address, caller, strategy.address, effective_in)
            if value > effective_native:
                wnative.send_native(self.address, caller, value - effective_native)

            self.logger.info(f"Native deposit by {caller}: shares={shares} x={effective_x} y={effective_y}")
            return shares, effective_x, effective_y

    def _check_deposit(self, amount_x: int, amount_y: int):
        if self._deposits_paused:
            self.logger.warning("Deposit rejected: deposits are paused")
            raise DepositsPaused("deposits are paused")
        strategy = self._strategy
        if strategy is None:
            raise InvalidStrategy("no strategy attached")
        if amount_x < 0 or amount_y < 0 or (amount_x == 0 and amount_y == 0):
            raise ZeroAmount("deposit needs at least one nonzero amount")
        return strategy

    def _compute_shares(self, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        shares, effective_x, effective_y = self._preview_shares(amount_x, amount_y)
        if shares == 0:
            raise ZeroShares(f"deposit ({amount_x}, {amount_y}) mints no shares")
        if self.total_supply() == 0 and shares <= self.MINIMUM_SHARES:
            raise ZeroShares(f"first deposit must mint more than {self.MINIMUM_SHARES} shares")
        return shares, effective_x, effective_y

    def _mint_shares(self, to: str, shares: int) -> int:
        if self.total_supply() == 0:
            shares -= self.MINIMUM_SHARES
            self._mint(self.address, self.MINIMUM_SHARES)
        self._mint(to, shares)
        return shares

    def _check_pull(self, token: Token, owner: str, amount: int) -> None:
        if amount == 0:
            return
        if token.balance_of(owner) < amount:
            raise InsufficientBalance(f"{owner} holds {token.balance_of(owner)} {token.symbol}, needs {amount}")
        if token.allowance(owner, self.address) < amount:
            raise InsufficientAllowance(f"{owner} approved {token.allowance(owner, self.address)} {token.symbol}, needs {amount}")

    # ------------------------------------------------------------------ #
    # Queued withdrawals
    # ------------------------------------------------------------------ #
    def queue_withdrawal(self, caller: str, shares: int, recipient: str) -> int:
        """ย้าย Share ไปพักที่ Strategy และบันทึกให้ recipient ในรอบปัจจุบัน คืนเลขรอบ"""
        with self._guard:
            strategy = self._require_strategy()
            if shares <= 0:
                raise ZeroShares("cannot queue zero shares")
            self._check_recipient(recipient)

            self._transfer(caller, strategy.address, shares)

            round_id = self.get_current_round()
            self._rounds[round_id].add(recipient, shares)

            self.logger.info(f"Withdrawal queued: round={round_id} recipient={recipient} shares={shares}")
            return round_id

    def cancel_queued_withdrawal(self, caller: str, shares: int, recipient: str) -> int:
        """ยกเลิกคำขอถอนของ caller ในรอบปัจจุบัน แล้วคืน Share ไปที่ recipient"""
        with self._guard:
            strategy = self._require_strategy()
            if shares <= 0:
                raise ZeroShares("cannot cancel zero shares")
            self._check_recipient(recipient)

            round_id = self.get_current_round()
            current = self._rounds[round_id]
            queued = current.queued_of(caller)
            if queued < shares:
                raise InsufficientQueuedShares(f"{caller} queued {queued} shares in round {round_id}, cancels {shares}")

            current.remove(caller, shares)
            self._transfer(strategy.address, recipient, shares)

            self.logger.info(f"Withdrawal cancelled: round={round_id} user={caller} shares={shares}")
            return round_id

    def execute_queued_withdrawals(self, caller: str) -> None:
        """
        Settle รอบปัจจุบัน (Strategy เท่านั้น)

        เผา Share ที่พักไว้ที่ Strategy, บันทึกยอด Token ที่ได้รับจริงเป็นยอดของรอบ แล้วเปิดรอบใหม่
        รอบที่ไม่มี Share เข้าคิวจะไม่เปลี่ยนแปลงสถานะใดๆ
        """
        with self._guard:
            strategy = self._strategy
            authorize(caller, Capability.STRATEGY, [strategy.address if strategy else None])

            round_id = self.get_current_round()
            current = self._rounds[round_id]
            total_queued_shares = current.total_queued_shares
            if total_queued_shares == 0:
                return

            self._burn(strategy.address, total_queued_shares)

            received_x = self.token_x.balance_of(self.address) - self._total_amount_x
            received_y = self.token_y.balance_of(self.address) - self._total_amount_y
            current.settle(received_x, received_y)
            self._total_amount_x += received_x
            self._total_amount_y += received_y
            self._rounds.append(QueuedWithdrawalRound())

            self.logger.info(
                f"Round {round_id} settled: shares={total_queued_shares} x={received_x} y={received_y}"
            )

    def redeem_queued_withdrawal(self, caller: str, round_id: int, recipient: str) -> Tuple[int, int]:
        """แลก Share ที่ Settle แล้วของ recipient ในรอบที่ระบุ (ใช้ได้ครั้งเดียว)"""
        with self._guard:
            amount_x, amount_y = self._redeem(round_id, recipient)
            if amount_x:
                self.token_x.transfer(self.address, recipient, amount_x)
            if amount_y:
                self.token_y.transfer(self.address, recipient, amount_y)
            return amount_x, amount_y

    def redeem_queued_withdrawal_native(self, caller: str, round_id: int, recipient: str) -> Tuple[int, int]:
        """เหมือน redeem_queued_withdrawal แต่ฝั่ง Wrapped Native จะถูกแกะแล้วส่งเป็น Native"""
        with self._guard:
            wnative = self.config.wnative
            if wnative is None:
                raise NoNativeToken("vault has no wrapped native token configured")
            native_is_x = same_address(wnative.address, self.token_x.address)
            if not native_is_x and not same_address(wnative.address, self.token_y.address):
                raise NoNativeToken("wrapped native token is neither token X nor token Y")

            amount_x, amount_y = self._redeem(round_id, recipient)
            native_amount, other_token, other_amount = (
                (amount_x, self.token_y, amount_y) if native_is_x else (amount_y, self.token_x, amount_x)
            )
            if native_amount:
                wnative.withdraw(self.address, native_amount)
                wnative.send_native(self.address, recipient, native_amount)
            if other_amount:
                other_token.transfer(self.address, recipient, other_amount)
            return amount_x, amount_y

    def _redeem(self, round_id: int, recipient: str) -> Tuple[int, int]:
        self._check_recipient(recipient)
        if round_id < 0 or round_id >= self.get_current_round():
            raise InvalidRound(f"round {round_id} is not settled yet")

        rnd = self._rounds[round_id]
        shares = rnd.queued_of(recipient)
        if shares == 0:
            raise NoQueuedWithdrawal(f"{recipient} has nothing to redeem in round {round_id}")

        amount_x, amount_y = rnd.redeemable(recipient)
        rnd.redeemed.add(recipient)
        self._total_amount_x -= amount_x
        self._total_amount_y -= amount_y

        self.logger.info(f"Redeemed round {round_id} for {recipient}: shares={shares} x={amount_x} y={amount_y}")
        return amount_x, amount_y

    # ------------------------------------------------------------------ #
    # Emergency
    # ------------------------------------------------------------------ #
    def emergency_withdraw(self, caller: str) -> Tuple[int, int]:
        """เผา Share ทั้งหมดของ caller และจ่ายส่วนแบ่งจากยอดว่างของ Vault (เฉพาะตอนไม่มี Strategy)"""
        with self._guard:
            if self._strategy is not None:
                raise NotInEmergencyMode("vault still has a strategy attached")

            shares = self.balance_of(caller)
            if shares == 0:
                raise ZeroShares(f"{caller} holds no shares")

            total_shares = self.total_supply()
            balance_x, balance_y = self._idle_balances()
            amount_x = mul_div_round_down(balance_x, shares, total_shares)
            amount_y = mul_div_round_down(balance_y, shares, total_shares)

            self._burn(caller, shares)
            if amount_x:
                self.token_x.transfer(self.address, caller, amount_x)
            if amount_y:
                self.token_y.transfer(self.address, caller, amount_y)

            self.logger.info(f"Emergency withdraw by {caller}: shares={shares} x={amount_x} y={amount_y}")
            return amount_x, amount_y

    # ------------------------------------------------------------------ #
    # Owner (factory) controls
    # ------------------------------------------------------------------ #
    def set_strategy(self, caller: str, new_strategy) -> None:
        """ผูก Strategy ใหม่: Strategy เดิมถูกบังคับถอนทั้งหมด แล้วย้ายยอดว่างไปให้ตัวใหม่"""
        authorize(caller, Capability.OWNER, [self.factory])
        if new_strategy is None:
            raise InvalidStrategy("strategy cannot be empty")
        current = self._strategy
        if current is not None and same_address(current.address, new_strategy.address):
            raise SameStrategy("strategy is already attached")

        if not (
            same_address(new_strategy.get_vault(), self.address)
            and same_address(new_strategy.get_pair().address, self.config.pair.address)
            and same_address(new_strategy.get_token_x().address, self.token_x.address)
            and same_address(new_strategy.get_token_y().address, self.token_y.address)
        ):
            raise InvalidStrategy("strategy does not match vault, pair or tokens")

        if current is not None:
            current.withdraw_all(self.address)

        balance_x, balance_y = self._idle_balances()
        if balance_x:
            self.token_x.transfer(self.address, new_strategy.address, balance_x)
        if balance_y:
            self.token_y.transfer(self.address, new_strategy.address, balance_y)

        self._strategy = new_strategy
        self.logger.info(f"Strategy set: {new_strategy.address} (moved x={balance_x} y={balance_y})")

    def set_emergency_mode(self, caller: str) -> None:
        """บังคับ Strategy ถอนทั้งหมดแล้วถอดออก เพื่อเปิดทาง emergency_withdraw"""
        authorize(caller, Capability.OWNER, [self.factory])
        strategy = self._strategy
        if strategy is None:
            raise InvalidStrategy("no strategy attached")

        strategy.withdraw_all(self.address)
        self._strategy = None
        self.logger.warning(f"Emergency mode enabled, strategy {strategy.address} detached")

    def pause_deposits(self, caller: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        self._deposits_paused = True
        self.logger.info("Deposits paused")

    def resume_deposits(self, caller: str) -> None:
        authorize(caller, Capability.OWNER, [self.factory])
        self._deposits_paused = False
        self.logger.info("Deposits resumed")

    def recover_token(self, caller: str, token: Token, recipient: str, amount: int) -> None:
        """กู้คืน Token แปลกปลอมที่ถูกส่งเข้ามา (ห้ามแตะ Token X/Y และ Share ของ Vault)"""
        authorize(caller, Capability.OWNER, [self.factory])
        if (
            same_address(token.address, self.token_x.address)
            or same_address(token.address, self.token_y.address)
            or same_address(token.address, self.address)
        ):
            raise InvalidToken(f"{token.address} cannot be recovered")
        self._check_recipient(recipient)
        token.transfer(self.address, recipient, amount)
        self.logger.info(f"Recovered {amount} of {token.address} to {recipient}")

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _require_strategy(self):
        if self._strategy is None:
            raise InvalidStrategy("no strategy attached")
        return self._strategy

    def _check_recipient(self, recipient: str) -> None:
        if not recipient or recipient == ZERO_ADDRESS or same_address(recipient, self.address):
            raise InvalidRecipient(f"invalid recipient {recipient}")

    def _idle_balances(self) -> Tuple[int, int]:
        return (
            self.token_x.balance_of(self.address) - self._total_amount_x,
            self.token_y.balance_of(self.address) - self._total_amount_y,
        )
