"""
binvault/utils/guards.py
สิทธิ์การเรียกใช้ (Capability) และตัวป้องกัน Reentrancy

- Capability: ตรวจสิทธิ์แบบชัดเจนที่หัวฟังก์ชัน (แทน modifier ของสัญญา)
- ReentrancyGuard: ถือธง "กำลังทำงาน" ตลอดการเรียกชั้นนอก และปลดเสมอแม้เกิด Error
"""

from enum import Enum
from typing import Iterable, Optional

from web3 import Web3

from binvault.utils.errors import Reentrancy, Unauthorized

ZERO_ADDRESS = "0x" + "0" * 40


class Capability(Enum):
    """บทบาทที่ฟังก์ชันต้องการ"""
    OWNER = "OWNER"
    STRATEGY = "STRATEGY"
    OPERATOR = "OPERATOR"
    VAULT = "VAULT"


def make_address(label: str) -> str:
    """สร้าง Address แบบ Deterministic จากชื่อ (ใช้กับ Component ในหน่วยความจำ)"""
    digest = Web3.keccak(text=label)
    return Web3.to_checksum_address(digest[-20:])


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def authorize(caller: str, capability: Capability, allowed: Iterable[Optional[str]]) -> None:
    """ผ่านเมื่อ caller ตรงกับ Address ใด Address หนึ่งที่ได้รับสิทธิ์ ไม่เช่นนั้นยก Unauthorized"""
    for address in allowed:
        if same_address(caller, address):
            return
    raise Unauthorized(caller, capability)


class ReentrancyGuard:
    """ธงป้องกันการเรียกซ้อน ใช้ผ่าน `with self._guard:`"""

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self._entered = False

    @property
    def entered(self) -> bool:
        return self._entered

    def __enter__(self) -> "ReentrancyGuard":
        if self._entered:
            raise Reentrancy(f"reentrant call into {self.owner or 'component'}")
        self._entered = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._entered = False
        return False
