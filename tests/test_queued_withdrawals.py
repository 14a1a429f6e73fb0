"""
tests/test_queued_withdrawals.py
Unit Tests สำหรับระบบถอนแบบเข้าคิวตามรอบ (Queue -> Settle -> Redeem)

เน้นคุณสมบัติของสมุดรอบ:
- Share ถูกอนุรักษ์ (ผลรวมยอดคงเหลือ == Total Supply) ตลอดทุกขั้น
- แลกคืนได้ตามสัดส่วนของรอบ และได้เพียงครั้งเดียว
- รอบที่ Settle แล้วจะไม่ถูกแก้ไขอีก และการ Settle รอบว่างไม่เปลี่ยนสถานะ
"""

import sys
import os
import pytest
import logging
from types import SimpleNamespace

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from binvault.amm.pair import InMemoryPair
from binvault.strategy.strategy import Strategy, StrategyConfig
from binvault.tokens.token import Token, WrappedNative
from binvault.utils.errors import (
    InsufficientQueuedShares,
    InvalidRecipient,
    InvalidRound,
    NoQueuedWithdrawal,
    Unauthorized,
    ZeroShares,
)
from binvault.utils.guards import ZERO_ADDRESS, make_address
from binvault.vault.config import VaultConfig
from binvault.vault.simple_vault import SimpleVault

logging.disable(logging.CRITICAL)

E18 = 10 ** 18
FACTORY = make_address("test:factory")
OPERATOR = make_address("test:operator")
FEE_RECIPIENT = make_address("test:fee-recipient")
ALICE = make_address("test:alice")
BOB = make_address("test:bob")
CAROL = make_address("test:carol")


def build_env(token_x: Token = None, **config_kwargs) -> SimpleNamespace:
    token_x = token_x or Token("Token X", "TX")
    token_y = Token("Token Y", "TY")
    pair = InMemoryPair(token_x, token_y)
    vault = SimpleVault(VaultConfig.for_pair(pair, **config_kwargs), FACTORY)
    strategy = Strategy(vault, FACTORY, StrategyConfig(OPERATOR, FEE_RECIPIENT), clock=lambda: 1_700_000_000)
    vault.set_strategy(FACTORY, strategy)
    return SimpleNamespace(token_x=token_x, token_y=token_y, pair=pair, vault=vault, strategy=strategy)


def deposit(env: SimpleNamespace, user: str, amount_x: int, amount_y: int) -> int:
    env.token_x.mint(user, amount_x)
    env.token_y.mint(user, amount_y)
    env.token_x.approve(user, env.vault.address, amount_x)
    env.token_y.approve(user, env.vault.address, amount_y)
    shares, _, _ = env.vault.deposit(user, amount_x, amount_y)
    return shares


def settle(env: SimpleNamespace) -> None:
    """Operator สั่ง rebalance แบบถอนอย่างเดียว (Settle คิวของรอบปัจจุบัน)"""
    env.strategy.rebalance(OPERATOR, 0, 0, 0, 0, [], 0, 0)


def assert_shares_conserved(vault: SimpleVault) -> None:
    assert sum(vault.holders().values()) == vault.total_supply()


class TestQueue:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        env = build_env()
        env.alice_shares = deposit(env, ALICE, E18, E18)
        return env

    def test_queue_parks_shares_at_strategy(self, env) -> None:
        round_id = env.vault.queue_withdrawal(ALICE, 4 * 10 ** 23, ALICE)

        assert round_id == 0
        assert env.vault.get_queued_withdrawal(0, ALICE) == 4 * 10 ** 23
        assert env.vault.get_total_queued_withdrawal(0) == 4 * 10 ** 23
        assert env.vault.get_current_total_queued_withdrawal() == 4 * 10 ** 23
        assert env.vault.balance_of(env.strategy.address) == 4 * 10 ** 23
        assert_shares_conserved(env.vault)

    def test_queue_for_another_recipient(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 10 ** 23, BOB)
        assert env.vault.get_queued_withdrawal(0, BOB) == 10 ** 23
        assert env.vault.get_queued_withdrawal(0, ALICE) == 0

    def test_queue_rejections(self, env) -> None:
        with pytest.raises(ZeroShares):
            env.vault.queue_withdrawal(ALICE, 0, ALICE)
        with pytest.raises(InvalidRecipient):
            env.vault.queue_withdrawal(ALICE, 1, ZERO_ADDRESS)
        with pytest.raises(InvalidRecipient):
            env.vault.queue_withdrawal(ALICE, 1, env.vault.address)

    def test_cancel_returns_shares(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 4 * 10 ** 23, ALICE)
        env.vault.cancel_queued_withdrawal(ALICE, 10 ** 23, ALICE)

        assert env.vault.get_queued_withdrawal(0, ALICE) == 3 * 10 ** 23
        assert env.vault.balance_of(ALICE) == env.alice_shares - 3 * 10 ** 23

        with pytest.raises(InsufficientQueuedShares):
            env.vault.cancel_queued_withdrawal(ALICE, 3 * 10 ** 23 + 1, ALICE)

        env.vault.cancel_queued_withdrawal(ALICE, 3 * 10 ** 23, BOB)
        assert env.vault.get_current_total_queued_withdrawal() == 0
        assert env.vault.balance_of(BOB) == 3 * 10 ** 23
        assert_shares_conserved(env.vault)

    def test_only_strategy_settles(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        with pytest.raises(Unauthorized):
            env.vault.execute_queued_withdrawals(ALICE)


class TestSettleAndRedeem:

    @pytest.fixture
    def env(self) -> SimpleNamespace:
        env = build_env()
        env.alice_shares = deposit(env, ALICE, E18, E18)
        env.bob_shares = deposit(env, BOB, E18, E18)
        return env

    def test_empty_settlement_is_a_no_op(self, env) -> None:
        settle(env)
        settle(env)
        assert env.vault.get_current_round() == 0
        assert env.vault.total_supply() == env.alice_shares + env.bob_shares + 10 ** 6

    def test_pro_rata_redemption(self, env) -> None:
        assert env.bob_shares == 10 ** 24
        env.vault.queue_withdrawal(ALICE, 4 * 10 ** 23, ALICE)
        env.vault.queue_withdrawal(BOB, 2 * 10 ** 23, BOB)

        settle(env)

        assert env.vault.get_current_round() == 1
        settled = env.vault.get_round(0)
        assert settled.settled
        assert (settled.total_amount_x, settled.total_amount_y) == (6 * 10 ** 17, 6 * 10 ** 17)
        assert env.vault.total_supply() == 2 * 10 ** 24 - 6 * 10 ** 23
        assert env.strategy.get_idle_balances() == (14 * 10 ** 17, 14 * 10 ** 17)

        assert env.vault.get_redeemable_amounts(0, ALICE) == (4 * 10 ** 17, 4 * 10 ** 17)
        assert env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE) == (4 * 10 ** 17, 4 * 10 ** 17)
        # ใครก็เรียกแลกแทนได้ แต่เงินไปที่เจ้าของรายการเสมอ
        assert env.vault.redeem_queued_withdrawal(CAROL, 0, BOB) == (2 * 10 ** 17, 2 * 10 ** 17)
        assert env.token_x.balance_of(BOB) == 2 * 10 ** 17

        assert env.token_x.balance_of(env.vault.address) == 0
        assert_shares_conserved(env.vault)

    def test_redeem_only_once(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        settle(env)
        env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE)

        with pytest.raises(NoQueuedWithdrawal):
            env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE)
        assert env.vault.get_queued_withdrawal(0, ALICE) == 0
        assert env.vault.get_redeemable_amounts(0, ALICE) == (0, 0)

    def test_unsettled_round_cannot_redeem(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        with pytest.raises(InvalidRound):
            env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE)
        assert env.vault.get_redeemable_amounts(0, ALICE) == (0, 0)

        settle(env)
        with pytest.raises(NoQueuedWithdrawal):
            env.vault.redeem_queued_withdrawal(CAROL, 0, CAROL)

    def test_settled_round_is_frozen(self, env) -> None:
        """คำขอถอนหลัง Settle ต้องเข้ารอบใหม่ ไม่แตะรอบเดิม"""
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        settle(env)
        before = (env.vault.get_total_queued_withdrawal(0), env.vault.get_round(0).total_amount_x)

        assert env.vault.queue_withdrawal(BOB, 10 ** 23, BOB) == 1
        settle(env)

        assert env.vault.get_current_round() == 2
        assert (env.vault.get_total_queued_withdrawal(0), env.vault.get_round(0).total_amount_x) == before
        with pytest.raises(InvalidRound):
            env.vault.get_round(3)

    def test_negative_round_ids_are_empty(self, env) -> None:
        """Round Id ติดลบต้องไม่ย้อนไปอ่านรอบปัจจุบันแบบ Index ของ list"""
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        settle(env)
        env.vault.queue_withdrawal(BOB, 10 ** 23, BOB)

        assert env.vault.get_queued_withdrawal(-1, BOB) == 0
        assert env.vault.get_total_queued_withdrawal(-1) == 0
        assert env.vault.get_redeemable_amounts(-2, ALICE) == (0, 0)
        with pytest.raises(InvalidRound):
            env.vault.get_round(-1)

    def test_rounds_frame(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, 10 ** 23, ALICE)
        settle(env)
        env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE)

        frame = env.vault.rounds_frame()
        assert list(frame['round']) == [0, 1]
        assert list(frame['settled']) == [True, False]
        assert frame.loc[0, 'redeemed'] == 1

    def test_emergency_mode_settles_pending_round(self, env) -> None:
        env.vault.queue_withdrawal(ALICE, env.alice_shares, ALICE)
        env.vault.set_emergency_mode(FACTORY)

        assert env.vault.get_current_round() == 1
        amount_x, amount_y = env.vault.redeem_queued_withdrawal(ALICE, 0, ALICE)
        assert amount_x == 2 * E18 * env.alice_shares // (env.alice_shares + env.bob_shares + 10 ** 6)

        bob_x, _ = env.vault.emergency_withdraw(BOB)
        assert bob_x > 0
        assert env.vault.total_supply() == 10 ** 6


class TestNativeRedeem:

    def test_redeem_unwraps_native_side(self) -> None:
        wnative = WrappedNative()
        env = build_env(token_x=wnative, wnative=wnative)
        shares = deposit(env, ALICE, E18, E18)

        env.vault.queue_withdrawal(ALICE, shares, ALICE)
        settle(env)
        amount_x, amount_y = env.vault.redeem_queued_withdrawal_native(ALICE, 0, ALICE)

        assert amount_x == amount_y == E18 - 1
        assert wnative.native_balance_of(ALICE) == E18 - 1
        assert wnative.balance_of(ALICE) == 0
        assert env.token_y.balance_of(ALICE) == E18 - 1
