"""
binvault/vault/config.py
คอนฟิกแบบ Immutable ต่อ Vault (แทนข้อมูลที่ฝังตอน Deploy) และตัวโหลด config.yaml
"""

import os
from dataclasses import dataclass
from typing import Any, Optional

import yaml

from binvault.amm.pair import IPair
from binvault.oracle.oracle import IPriceFeed
from binvault.tokens.token import Token


@dataclass(frozen=True)
class VaultConfig:
    """Pair, Token และ Oracle ที่ Vault ผูกอยู่ตลอดอายุการใช้งาน"""
    pair: IPair
    token_x: Token
    token_y: Token
    decimals_x: int
    decimals_y: int
    oracle_x: Optional[IPriceFeed] = None
    oracle_y: Optional[IPriceFeed] = None
    oracle_decimals_x: int = 8
    oracle_decimals_y: int = 8
    wnative: Optional[Token] = None

    @classmethod
    def for_pair(cls, pair: IPair, **kwargs) -> "VaultConfig":
        """สร้างคอนฟิกจาก Pair โดยอ่าน Token และ Decimal ให้อัตโนมัติ"""
        return cls(
            pair=pair,
            token_x=pair.token_x,
            token_y=pair.token_y,
            decimals_x=pair.token_x.decimals,
            decimals_y=pair.token_y.decimals,
            **kwargs,
        )


def load_config(file_path: str = 'config.yaml') -> dict[str, Any]:
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"⚠️ ไม่พบไฟล์ตั้งค่า: {file_path}")
    with open(file_path, 'r', encoding='utf-8') as file:
        return yaml.safe_load(file)
