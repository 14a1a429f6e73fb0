"""
binvault/engine/simulation_engine.py
เครื่องจำลองการทำงานของ Vault + Strategy แบบรายวัน

แต่ละวัน:
1. Active Id ของ Pair เดินแบบสุ่ม (Random Walk ด้วย numpy, กำหนด seed ได้)
2. Position ของ Strategy ได้ค่าธรรมเนียมตามอัตรารายวัน
3. ผู้ฝากเข้าฝาก (วันแรก) และเข้าคิวถอนตามรอบที่ตั้งไว้
4. Operator rebalance รอบ Active Id ปัจจุบัน (Settle คิวถอน + คิด AUM Fee ในตัว)
5. ผู้ที่มีรอบ Settle แล้วแลกคืน แล้วบันทึกสถานะเป็นแถวใน DataFrame
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from binvault.amm.pair import REAL_ID_SHIFT, InMemoryPair
from binvault.math.fixed_point import BASIS_POINTS, PRECISION, SCALE_OFFSET, to_float, value_in_y
from binvault.oracle.oracle import StaticPriceFeed
from binvault.strategy.strategy import ONE_DAY, Strategy, StrategyConfig
from binvault.tokens.token import Token
from binvault.utils.guards import make_address
from binvault.utils.logger import get_logger
from binvault.vault.config import VaultConfig
from binvault.vault.oracle_vault import OracleVault
from binvault.vault.simple_vault import SimpleVault

ORACLE_DECIMALS = 8


@dataclass
class SimulationConfig:
    days: int = 30
    seed: Optional[int] = 42
    vault_type: str = 'simple'            # 'simple' | 'oracle'
    bin_step: int = 25
    daily_bin_volatility: float = 6.0     # ส่วนเบี่ยงเบนมาตรฐานของการขยับ Bin ต่อวัน
    range_half_width: int = 5
    slippage_bins: int = 2
    liquidity_per_bin: float = 40.0       # หน่วย Token Y (ทั้งเหรียญ)
    daily_fee_bps: float = 5.0            # ผลตอบแทนค่าธรรมเนียมต่อวันของ Position
    aum_annual_fee_bps: int = 200
    depositors: int = 3
    deposit_x: float = 100.0
    deposit_y: float = 100.0
    withdraw_every_days: int = 7
    withdraw_fraction_bps: int = 2500
    decimals: int = 18

    def to_raw(self, amount: float) -> int:
        return int(amount * 10 ** self.decimals)


class SimulationEngine:
    def __init__(self, config: SimulationConfig) -> None:
        if config.vault_type not in ('simple', 'oracle'):
            raise ValueError(f"Unknown vault_type: {config.vault_type}")
        if config.days <= 0:
            raise ValueError("days must be positive")

        self.config = config
        self.logger = get_logger("SimulationEngine")
        self.now = int(datetime(2024, 1, 1).timestamp())

        self.factory = make_address("sim:factory")
        self.operator = make_address("sim:operator")
        self.fee_recipient = make_address("sim:fee-recipient")
        self.depositors = [make_address(f"sim:depositor:{i}") for i in range(config.depositors)]

        self.token_x = Token("Simulated X", "SIMX", config.decimals)
        self.token_y = Token("Simulated Y", "SIMY", config.decimals)
        self.pair = InMemoryPair(self.token_x, self.token_y, bin_step=config.bin_step, active_id=REAL_ID_SHIFT)

        self.feed_x: Optional[StaticPriceFeed] = None
        self.feed_y: Optional[StaticPriceFeed] = None
        if config.vault_type == 'oracle':
            self.feed_x = StaticPriceFeed(self._feed_answer(), ORACLE_DECIMALS, label="sim:x")
            self.feed_y = StaticPriceFeed(10 ** ORACLE_DECIMALS, ORACLE_DECIMALS, label="sim:y")
            vault_cfg = VaultConfig.for_pair(self.pair, oracle_x=self.feed_x, oracle_y=self.feed_y,
                                             oracle_decimals_x=ORACLE_DECIMALS, oracle_decimals_y=ORACLE_DECIMALS)
            self.vault = OracleVault(vault_cfg, self.factory)
        else:
            self.vault = SimpleVault(VaultConfig.for_pair(self.pair), self.factory)
        self.vault.initialize(self.factory, "Simulated Vault Share", "SVS")

        strategy_cfg = StrategyConfig(self.operator, self.fee_recipient, config.aum_annual_fee_bps)
        self.strategy = Strategy(self.vault, self.factory, strategy_cfg, clock=lambda: self.now)
        self.vault.set_strategy(self.factory, self.strategy)

        # Counters & Stats
        self.rebalance_count = 0
        self.queued_count = 0
        self.redeemed_x = 0
        self.redeemed_y = 0

    def run(self) -> pd.DataFrame:
        cfg = self.config
        if cfg.seed is not None:
            np.random.seed(cfg.seed)
        moves = np.rint(np.random.normal(0, cfg.daily_bin_volatility, cfg.days)).astype(int)

        dates = pd.date_range(start=datetime.fromtimestamp(self.now), periods=cfg.days, freq='D')
        history: List[Dict[str, Any]] = []

        for day, move in enumerate(moves):
            self.now += ONE_DAY
            events: List[str] = []

            # 1. ตลาดขยับ
            self.pair.set_active_id(self.pair.get_active_id() + int(move))
            if self.feed_x is not None:
                self.feed_x.set_answer(self._feed_answer())

            # 2. ค่าธรรมเนียมของ Position
            if self._accrue_position_fees():
                events.append("FEES")

            # 3. ผู้ใช้ฝาก / เข้าคิวถอน
            if day == 0:
                self._deposit_all()
                events.append("DEPOSIT")
            elif cfg.withdraw_every_days > 0 and day % cfg.withdraw_every_days == 0:
                if self._queue_withdrawal(day):
                    events.append("QUEUE")

            # 4. Rebalance รอบ Active Id ปัจจุบัน
            settled_shares, _, _ = self._rebalance()
            if settled_shares:
                events.append("SETTLE")

            # 5. แลกคืนรอบที่ Settle แล้ว
            if self._redeem_settled():
                events.append("REDEEM")

            history.append(self._snapshot(dates[day], day, events))

        df = pd.DataFrame(history)
        self.logger.info(
            f"Simulation finished: {cfg.days} days, {self.rebalance_count} rebalances, "
            f"{self.queued_count} queued withdrawals"
        )
        return df

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    def _feed_answer(self) -> int:
        price = self.pair.get_price_from_id(self.pair.get_active_id())
        return max(1, (price * 10 ** ORACLE_DECIMALS) >> SCALE_OFFSET)

    def _accrue_position_fees(self) -> bool:
        lower, upper = self.strategy.get_range()
        if upper == 0:
            return False

        position_value = 0
        for bin_id in range(lower, upper + 1):
            shares = self.pair.balance_of(self.strategy.address, bin_id)
            if shares == 0:
                continue
            reserve_x, reserve_y = self.pair.get_bin(bin_id)
            supply = self.pair.total_supply(bin_id)
            price = self.pair.get_price_from_id(bin_id)
            position_value += value_in_y(price, reserve_x, reserve_y) * shares // supply

        fee_value = int(position_value * self.config.daily_fee_bps) // BASIS_POINTS
        if fee_value == 0:
            return False

        # ครึ่งหนึ่งเป็น Y อีกครึ่งเป็น X ตามราคา Active
        price = self.pair.get_price_from_id(self.pair.get_active_id())
        fee_y = fee_value // 2
        fee_x = ((fee_value - fee_y) << SCALE_OFFSET) // price
        self.pair.accrue_fees(self.strategy.address, fee_x, fee_y)
        return True

    def _deposit_all(self) -> None:
        amount_x = self.config.to_raw(self.config.deposit_x)
        amount_y = self.config.to_raw(self.config.deposit_y)
        for user in self.depositors:
            self.token_x.mint(user, amount_x)
            self.token_y.mint(user, amount_y)
            self.token_x.approve(user, self.vault.address, amount_x)
            self.token_y.approve(user, self.vault.address, amount_y)
            self.vault.deposit(user, amount_x, amount_y)

    def _queue_withdrawal(self, day: int) -> bool:
        user = self.depositors[(day // self.config.withdraw_every_days) % len(self.depositors)]
        shares = self.vault.balance_of(user) * self.config.withdraw_fraction_bps // BASIS_POINTS
        if shares == 0:
            return False
        self.vault.queue_withdrawal(user, shares, user)
        self.queued_count += 1
        return True

    def _rebalance(self):
        cfg = self.config
        active_id = self.pair.get_active_id()
        half = cfg.range_half_width
        desired_l = [cfg.to_raw(cfg.liquidity_per_bin)] * (2 * half + 1)

        result = self.strategy.rebalance(
            self.operator,
            active_id - half,
            active_id + half,
            active_id,
            cfg.slippage_bins,
            desired_l,
            PRECISION,
            PRECISION,
        )
        self.rebalance_count += 1
        return result

    def _redeem_settled(self) -> bool:
        redeemed = False
        for round_id in range(self.vault.get_current_round()):
            for user in self.depositors:
                if self.vault.get_queued_withdrawal(round_id, user) == 0:
                    continue
                amount_x, amount_y = self.vault.redeem_queued_withdrawal(user, round_id, user)
                self.redeemed_x += amount_x
                self.redeemed_y += amount_y
                redeemed = True
        return redeemed

    def _snapshot(self, date, day: int, events: List[str]) -> Dict[str, Any]:
        active_id = self.pair.get_active_id()
        price = self.pair.get_price_from_id(active_id)
        balance_x, balance_y = self.vault.get_balances()
        tvl_y = value_in_y(price, balance_x, balance_y)
        supply = self.vault.total_supply()
        lower, upper = self.strategy.get_range()
        scale = 10 ** self.config.decimals

        return {
            'date': date,
            'day': day,
            'active_id': active_id,
            'price': to_float(price),
            'round': self.vault.get_current_round(),
            'total_supply': supply,
            'balance_x': balance_x / scale,
            'balance_y': balance_y / scale,
            'tvl_y': tvl_y / scale,
            'share_price_y': (tvl_y / supply) * self.vault.SHARES_PRECISION if supply else 0.0,
            'range_lower': lower,
            'range_upper': upper,
            'fees_paid_x': self.token_x.balance_of(self.fee_recipient) / scale,
            'fees_paid_y': self.token_y.balance_of(self.fee_recipient) / scale,
            'redeemed_x': self.redeemed_x / scale,
            'redeemed_y': self.redeemed_y / scale,
            'events': '|'.join(events),
        }
