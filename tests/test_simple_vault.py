"""
tests/test_simple_vault.py
Unit Tests สำหรับ SimpleVault (ตั้งราคา Share ตามสัดส่วน X:Y ของ Pool)

ครอบคลุม: การฝากครั้งแรก, การฝากตามสัดส่วน, ความ Atomic ของการฝาก,
โหมดฉุกเฉิน, การย้าย Strategy, การฝากด้วยเหรียญ Native และงานของเจ้าของ Vault

ประวัติการแก้ไข:
- v1.1.0: เพิ่มเคสฝาก Native พร้อมคืนเงินส่วนเกิน
"""

__version__ = "1.1.0"

import sys
import os
import pytest
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from binvault.amm.pair import InMemoryPair
from binvault.strategy.strategy import Strategy, StrategyConfig
from binvault.tokens.token import Token, WrappedNative
from binvault.utils.errors import (
    AlreadyInitialized,
    DepositsPaused,
    InsufficientAllowance,
    InvalidNativeAmount,
    InvalidShares,
    InvalidStrategy,
    InvalidToken,
    NoNativeToken,
    NotInEmergencyMode,
    SameStrategy,
    Unauthorized,
    ZeroAmount,
    ZeroCross,
    ZeroShares,
)
from binvault.utils.guards import make_address
from binvault.vault.config import VaultConfig
from binvault.vault.simple_vault import SimpleVault

logging.disable(logging.CRITICAL)

E18 = 10 ** 18
FACTORY = make_address("test:factory")
OPERATOR = make_address("test:operator")
FEE_RECIPIENT = make_address("test:fee-recipient")
ALICE = make_address("test:alice")
BOB = make_address("test:bob")


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def build_env(token_x: Token = None, token_y: Token = None, attach: bool = True, **config_kwargs) -> SimpleNamespace:
    token_x = token_x or Token("Token X", "TX")
    token_y = token_y or Token("Token Y", "TY")
    pair = InMemoryPair(token_x, token_y)
    vault = SimpleVault(VaultConfig.for_pair(pair, **config_kwargs), FACTORY)
    strategy = Strategy(vault, FACTORY, StrategyConfig(OPERATOR, FEE_RECIPIENT), clock=FakeClock())
    if attach:
        vault.set_strategy(FACTORY, strategy)
    return SimpleNamespace(token_x=token_x, token_y=token_y, pair=pair, vault=vault, strategy=strategy)


def fund(env: SimpleNamespace, user: str, amount_x: int, amount_y: int) -> None:
    env.token_x.mint(user, amount_x)
    env.token_y.mint(user, amount_y)
    env.token_x.approve(user, env.vault.address, amount_x)
    env.token_y.approve(user, env.vault.address, amount_y)


class TestSimpleVaultDeposit:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        return build_env()

    def test_first_deposit_reserves_minimum_shares(self, env) -> None:
        """ฝาก (1e18, 1e18) ครั้งแรก: ได้ 1e24 - 1e6 Share โดย Vault ถือ 1e6 ไว้ถาวร"""
        fund(env, ALICE, E18, E18)
        shares, effective_x, effective_y = env.vault.deposit(ALICE, E18, E18)

        assert shares == E18 * 10 ** 6 - 10 ** 6
        assert (effective_x, effective_y) == (E18, E18)
        assert env.vault.balance_of(ALICE) == shares
        assert env.vault.balance_of(env.vault.address) == 10 ** 6
        assert env.vault.total_supply() == E18 * 10 ** 6
        assert env.strategy.get_idle_balances() == (E18, E18)
        assert env.vault.get_balances() == (E18, E18)

    def test_share_decimals(self, env) -> None:
        assert env.vault.decimals == 24

    def test_deposit_follows_pool_ratio(self, env) -> None:
        """Pool 1:2 -> ฝาก (1, 1) ใช้ได้จริงเพียง (0.5, 1)"""
        fund(env, ALICE, E18, 2 * E18)
        env.vault.deposit(ALICE, E18, 2 * E18)

        fund(env, BOB, E18, E18)
        shares, effective_x, effective_y = env.vault.deposit(BOB, E18, E18)

        assert (effective_x, effective_y) == (E18 // 2, E18)
        assert shares == 10 ** 24
        assert env.token_x.balance_of(BOB) == E18 // 2
        assert env.vault.get_balances() == (E18 + E18 // 2, 3 * E18)

    def test_single_sided_pool_takes_one_token(self, env) -> None:
        fund(env, ALICE, E18, 0)
        env.vault.deposit(ALICE, E18, 0)

        fund(env, BOB, E18 // 2, E18 // 2)
        shares, effective_x, effective_y = env.vault.deposit(BOB, E18 // 2, E18 // 2)

        assert shares == 5 * 10 ** 23
        assert (effective_x, effective_y) == (E18 // 2, 0)
        assert env.token_y.balance_of(BOB) == E18 // 2

    def test_zero_cross_rejected(self, env) -> None:
        fund(env, ALICE, E18, E18)
        env.vault.deposit(ALICE, E18, E18)

        fund(env, BOB, E18, 0)
        with pytest.raises(ZeroCross):
            env.vault.deposit(BOB, E18, 0)

    def test_first_deposit_too_small(self, env) -> None:
        fund(env, ALICE, 1, 0)
        with pytest.raises(ZeroShares):
            env.vault.deposit(ALICE, 1, 0)

    def test_deposit_rejections(self, env) -> None:
        fund(env, ALICE, E18, E18)
        with pytest.raises(ZeroAmount):
            env.vault.deposit(ALICE, 0, 0)

        env.vault.pause_deposits(FACTORY)
        assert env.vault.is_deposits_paused()
        env.vault.logger = MagicMock()
        with pytest.raises(DepositsPaused):
            env.vault.deposit(ALICE, E18, E18)
        env.vault.logger.warning.assert_called_once()
        env.vault.resume_deposits(FACTORY)

        with pytest.raises(Unauthorized):
            env.vault.pause_deposits(ALICE)

    def test_deposit_without_strategy(self) -> None:
        env = build_env(attach=False)
        fund(env, ALICE, E18, E18)
        with pytest.raises(InvalidStrategy):
            env.vault.deposit(ALICE, E18, E18)

    def test_failed_pull_mints_nothing(self, env) -> None:
        """Allowance ไม่พอฝั่ง Y: ต้องไม่มี Share หรือ Token ใดขยับ"""
        fund(env, ALICE, E18, E18)
        env.token_y.approve(ALICE, env.vault.address, E18 - 1)

        with pytest.raises(InsufficientAllowance):
            env.vault.deposit(ALICE, E18, E18)

        assert env.vault.total_supply() == 0
        assert env.token_x.balance_of(ALICE) == E18
        assert env.strategy.get_idle_balances() == (0, 0)

    def test_preview_amounts(self, env) -> None:
        fund(env, ALICE, E18, E18)
        env.vault.deposit(ALICE, E18, E18)

        total = env.vault.total_supply()
        assert env.vault.preview_amounts(total) == (E18, E18)
        assert env.vault.preview_amounts(0) == (0, 0)
        with pytest.raises(InvalidShares):
            env.vault.preview_amounts(total + 1)

    def test_share_token_transfers(self, env) -> None:
        fund(env, ALICE, E18, E18)
        shares, _, _ = env.vault.deposit(ALICE, E18, E18)

        env.vault.approve(ALICE, BOB, shares)
        env.vault.transfer_from(BOB, ALICE, BOB, shares // 2)
        assert env.vault.balance_of(BOB) == shares // 2
        assert sum(env.vault.holders().values()) == env.vault.total_supply()


class TestSimpleVaultEmergency:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        env = build_env()
        fund(env, ALICE, E18, E18)
        env.vault.deposit(ALICE, E18, E18)
        return env

    def test_emergency_withdraw_pays_pro_rata(self, env) -> None:
        """ถอนทั้งหมดจาก Vault ที่ไม่มี Strategy: ได้ส่วนแบ่งหักส่วนของ Share ขั้นต่ำ"""
        with pytest.raises(NotInEmergencyMode):
            env.vault.emergency_withdraw(ALICE)

        env.vault.set_emergency_mode(FACTORY)
        assert env.vault.get_strategy() is None
        assert env.strategy.get_idle_balances() == (0, 0)

        shares = env.vault.balance_of(ALICE)
        expected = E18 * shares // env.vault.total_supply()
        assert env.vault.emergency_withdraw(ALICE) == (expected, expected)
        assert expected == E18 - 1
        assert env.vault.balance_of(ALICE) == 0
        assert env.token_x.balance_of(ALICE) == expected

        with pytest.raises(ZeroShares):
            env.vault.emergency_withdraw(ALICE)

    def test_emergency_mode_owner_only(self, env) -> None:
        with pytest.raises(Unauthorized):
            env.vault.set_emergency_mode(ALICE)


class TestSimpleVaultOwner:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        env = build_env()
        fund(env, ALICE, E18, E18)
        env.vault.deposit(ALICE, E18, E18)
        return env

    def test_set_strategy_moves_funds(self, env) -> None:
        new_strategy = Strategy(env.vault, FACTORY, StrategyConfig(OPERATOR, FEE_RECIPIENT), clock=FakeClock())
        env.vault.set_strategy(FACTORY, new_strategy)

        assert env.vault.get_strategy() is new_strategy
        assert env.strategy.get_idle_balances() == (0, 0)
        assert new_strategy.get_idle_balances() == (E18, E18)

        with pytest.raises(SameStrategy):
            env.vault.set_strategy(FACTORY, new_strategy)

    def test_set_strategy_rejects_foreign_strategy(self, env) -> None:
        other = build_env()
        with pytest.raises(InvalidStrategy):
            env.vault.set_strategy(FACTORY, other.strategy)
        with pytest.raises(Unauthorized):
            env.vault.set_strategy(ALICE, other.strategy)

    def test_initialize_once(self, env) -> None:
        env.vault.initialize(FACTORY, "Vault Share", "VS")
        assert (env.vault.name, env.vault.symbol) == ("Vault Share", "VS")
        with pytest.raises(AlreadyInitialized):
            env.vault.initialize(FACTORY, "Again", "AG")

    def test_recover_token(self, env) -> None:
        stray = Token("Stray", "STRAY")
        stray.mint(env.vault.address, 42)

        env.vault.recover_token(FACTORY, stray, BOB, 42)
        assert stray.balance_of(BOB) == 42

        with pytest.raises(InvalidToken):
            env.vault.recover_token(FACTORY, env.token_x, BOB, 1)
        with pytest.raises(InvalidToken):
            env.vault.recover_token(FACTORY, env.vault, BOB, 1)

    def test_views_follow_strategy(self, env) -> None:
        assert env.vault.get_operator() == OPERATOR
        assert env.vault.get_range() == (0, 0)
        assert env.vault.get_aum_annual_fee() == 0


class TestSimpleVaultNative:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        wnative = WrappedNative()
        env = build_env(token_x=wnative, wnative=wnative)
        env.wnative = wnative
        return env

    def test_native_deposit_wraps(self, env) -> None:
        env.wnative.fund_native(ALICE, E18)
        env.token_y.mint(ALICE, E18)
        env.token_y.approve(ALICE, env.vault.address, E18)

        shares, _, _ = env.vault.deposit_native(ALICE, E18, E18, value=E18)

        assert shares == E18 * 10 ** 6 - 10 ** 6
        assert env.wnative.native_balance_of(ALICE) == 0
        assert env.strategy.get_idle_balances() == (E18, E18)

    def test_native_excess_is_refunded(self, env) -> None:
        env.wnative.fund_native(ALICE, E18)
        env.token_y.mint(ALICE, 2 * E18)
        env.token_y.approve(ALICE, env.vault.address, 2 * E18)
        env.vault.deposit_native(ALICE, E18, 2 * E18, value=E18)

        env.wnative.fund_native(BOB, E18)
        env.token_y.mint(BOB, E18)
        env.token_y.approve(BOB, env.vault.address, E18)
        _, effective_x, effective_y = env.vault.deposit_native(BOB, E18, E18, value=E18)

        assert (effective_x, effective_y) == (E18 // 2, E18)
        assert env.wnative.native_balance_of(BOB) == E18 // 2
        assert env.wnative.native_balance_of(env.vault.address) == 0

    def test_native_amount_must_match(self, env) -> None:
        env.wnative.fund_native(ALICE, E18)
        with pytest.raises(InvalidNativeAmount):
            env.vault.deposit_native(ALICE, E18, 0, value=E18 - 1)

    def test_vault_without_native_token(self) -> None:
        env = build_env()
        with pytest.raises(NoNativeToken):
            env.vault.deposit_native(ALICE, E18, 0, value=E18)
