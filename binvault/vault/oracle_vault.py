"""
binvault/vault/oracle_vault.py
OracleVault - ตั้งราคา Share จากมูลค่าในหน่วย Y โดยใช้ราคาจาก Price Feed ภายนอก

ราคาที่ได้คือ Y ต่อ X (หน่วยดิบของ Token) ในรูปแบบ 128.128
Feed ที่ตอบราคาไม่เป็นบวก หรือเกิน uint128 ถือเป็น Error เสมอ (ไม่ตีเป็นศูนย์)
"""

from typing import Tuple

from binvault.math.fixed_point import MAX_UINT128, SCALE_OFFSET, mul_div_round_down, shift_div_round_down, value_in_y
from binvault.oracle.oracle import IPriceFeed
from binvault.utils.errors import InvalidPrice
from binvault.vault.base_vault import BaseVault
from binvault.vault.config import VaultConfig


class OracleVault(BaseVault):

    def __init__(self, config: VaultConfig, factory: str, address: str = None) -> None:
        if config.oracle_x is None or config.oracle_y is None:
            raise ValueError("OracleVault needs both oracle_x and oracle_y in its config")
        super().__init__(config, factory, address)

    def get_price(self) -> int:
        """ราคา 128.128 ของ Token X ในหน่วย Token Y"""
        cfg = self.config
        scaled_price_x = self._get_oracle_price(cfg.oracle_x) * 10 ** cfg.decimals_y * 10 ** cfg.oracle_decimals_y
        scaled_price_y = self._get_oracle_price(cfg.oracle_y) * 10 ** cfg.decimals_x * 10 ** cfg.oracle_decimals_x

        price = shift_div_round_down(scaled_price_x, SCALE_OFFSET, scaled_price_y)
        if price == 0:
            raise InvalidPrice("scaled oracle price rounds to zero")
        return price

    def _preview_shares(self, amount_x: int, amount_y: int) -> Tuple[int, int, int]:
        if amount_x == 0 and amount_y == 0:
            return 0, 0, 0

        price = self.get_price()
        value = value_in_y(price, amount_x, amount_y)

        total_shares = self.total_supply()
        if total_shares == 0:
            return value * self.SHARES_PRECISION, amount_x, amount_y

        total_x, total_y = self.get_balances()
        total_value = value_in_y(price, total_x, total_y)
        if total_value == 0:
            return value * self.SHARES_PRECISION, amount_x, amount_y

        return mul_div_round_down(value, total_shares, total_value), amount_x, amount_y

    @staticmethod
    def _get_oracle_price(feed: IPriceFeed) -> int:
        _, answer, _, _, _ = feed.latest_round_data()
        if answer <= 0 or answer > MAX_UINT128:
            raise InvalidPrice(f"feed {feed.address} answered {answer}")
        return answer
