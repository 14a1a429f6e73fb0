"""
binvault/oracle/oracle.py
แหล่งราคา (Price Feed) สำหรับ OracleVault

- IPriceFeed: อินเทอร์เฟซแบบ Chainlink (latest_round_data)
- StaticPriceFeed: ราคาที่ตั้งค่าเองได้ สำหรับงานจำลอง/ทดสอบ
- ChainlinkPriceFeed: อ่าน Aggregator จริงผ่าน SafeWeb3
"""

import time
from dataclasses import dataclass
from typing import Protocol, Tuple

from binvault.utils.SafeWeb3 import SafeWeb3
from binvault.utils.guards import make_address

AGGREGATOR_ABI = [
    {"inputs": [], "name": "decimals", "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "latestRoundData", "outputs": [{"internalType": "uint80", "name": "roundId", "type": "uint80"}, {"internalType": "int256", "name": "answer", "type": "int256"}, {"internalType": "uint256", "name": "startedAt", "type": "uint256"}, {"internalType": "uint256", "name": "updatedAt", "type": "uint256"}, {"internalType": "uint80", "name": "answeredInRound", "type": "uint80"}], "stateMutability": "view", "type": "function"},
]

RoundData = Tuple[int, int, int, int, int]


class IPriceFeed(Protocol):
    address: str

    def decimals(self) -> int:
        ...

    def latest_round_data(self) -> RoundData:
        ...


@dataclass
class StaticPriceFeed:
    """Feed ที่คืนคำตอบตามที่ตั้งไว้ (ค่าติดลบ/ศูนย์ ใช้ทดสอบการปฏิเสธราคา)"""
    answer: int
    feed_decimals: int = 8
    label: str = "feed"
    round_id: int = 1

    def __post_init__(self) -> None:
        self.address = make_address(f"oracle:{self.label}")

    def decimals(self) -> int:
        return self.feed_decimals

    def set_answer(self, answer: int) -> None:
        self.answer = answer
        self.round_id += 1

    def latest_round_data(self) -> RoundData:
        now = int(time.time())
        return self.round_id, self.answer, now, now, self.round_id


class ChainlinkPriceFeed:
    """Aggregator บนเชน อ่านผ่าน SafeWeb3 (มี Retry และสลับ RPC)"""

    def __init__(self, safe_w3: SafeWeb3, address: str) -> None:
        self.sw3 = safe_w3
        self.contract = safe_w3.contract(address, AGGREGATOR_ABI)
        self.address = self.contract.address
        self._decimals = None

    def decimals(self) -> int:
        if self._decimals is None:
            self._decimals = int(self.sw3.call_contract_safe(self.contract.functions.decimals()))
        return self._decimals

    def latest_round_data(self) -> RoundData:
        data = self.sw3.call_contract_safe(self.contract.functions.latestRoundData())
        return tuple(int(v) for v in data)
