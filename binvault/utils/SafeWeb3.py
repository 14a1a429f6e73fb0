"""
binvault/utils/SafeWeb3.py
คลาสยูทิลิตี้สำหรับอ่านข้อมูลบนเชนแบบปลอดภัย (Retry & Failover)
ใช้กับ Price Feed ของ OracleVault ที่อ่านจาก Aggregator จริง
"""

import time
from typing import List, Sequence

from web3 import Web3

from binvault.utils.logger import get_logger


class SafeWeb3:
    def __init__(self, rpc_urls: Sequence[str], retry_delay: float = 2.0):
        if not rpc_urls:
            raise ValueError("SafeWeb3 needs at least one RPC url")
        self.rpc_urls: List[str] = list(rpc_urls)
        self.retry_delay = retry_delay
        self.current_rpc_index = 0
        self.logger = get_logger("SafeWeb3")
        self.w3 = self._connect()

    def _connect(self) -> Web3:
        """วนหา RPC ที่เชื่อมต่อได้ เริ่มจากตัวล่าสุดที่ใช้งานได้"""
        for i in range(len(self.rpc_urls)):
            idx = (self.current_rpc_index + i) % len(self.rpc_urls)
            url = self.rpc_urls[idx]
            w3 = Web3(Web3.HTTPProvider(url))
            if w3.is_connected():
                self.current_rpc_index = idx
                return w3
            self.logger.warning(f"RPC unreachable, trying next: {url}")

        raise ConnectionError("no RPC endpoint in the list is reachable")

    def contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def call_contract_safe(self, contract_func, retries: int = 3):
        """เรียกอ่าน Smart Contract พร้อม Retry บน RPC เดิม (การสลับ RPC ทำตอนเชื่อมต่อใน _connect เท่านั้น)"""
        for attempt in range(retries):
            try:
                return contract_func.call()
            except Exception as e:
                if attempt == retries - 1:
                    raise
                self.logger.warning(f"Contract call failed (attempt {attempt + 1}/{retries}): {e}")
                time.sleep(self.retry_delay)
