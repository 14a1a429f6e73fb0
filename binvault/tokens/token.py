"""
binvault/tokens/token.py
สมุดบัญชี Token แบบ Fungible ในหน่วยความจำ

- FungibleLedger: ยอดคงเหลือ + Total Supply + Allowance (ใช้ทั้งกับ Token X/Y และ Share ของ Vault)
- Token: สินทรัพย์ทั่วไป มี faucet (mint) สำหรับงานจำลอง
- WrappedNative: Token ที่ห่อเหรียญ Native พร้อมสมุดยอด Native แยก
"""

from typing import Dict, Tuple

from binvault.utils.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidRecipient,
    NativeTransferFailed,
    ZeroAmount,
)
from binvault.utils.guards import ZERO_ADDRESS, make_address


class FungibleLedger:
    """ยอดคงเหลือต่อ Address โดยรักษา sum(balances) == total_supply ตลอดเวลา"""

    def __init__(self, name: str = "", symbol: str = "", decimals: int = 18) -> None:
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    # --- Views ---
    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def total_supply(self) -> int:
        return self._total_supply

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def holders(self) -> Dict[str, int]:
        return {account: bal for account, bal in self._balances.items() if bal > 0}

    # --- Public transfers ---
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._transfer(sender, to, amount)
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if spender == ZERO_ADDRESS:
            raise InvalidRecipient("cannot approve the zero address")
        self._allowances[(owner, spender)] = amount
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        if spender != owner:
            allowed = self.allowance(owner, spender)
            if allowed < amount:
                raise InsufficientAllowance(f"{spender} may spend {allowed} of {owner}, needs {amount}")
            self._allowances[(owner, spender)] = allowed - amount
        self._transfer(owner, to, amount)
        return True

    # --- Internal bookkeeping ---
    def _transfer(self, sender: str, to: str, amount: int) -> None:
        if to == ZERO_ADDRESS:
            raise InvalidRecipient("transfer to the zero address")
        if amount < 0:
            raise ZeroAmount(f"negative transfer amount {amount}")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"{sender} holds {balance} {self.symbol}, needs {amount}")
        self._balances[sender] = balance - amount
        self._balances[to] = self.balance_of(to) + amount

    def _mint(self, to: str, amount: int) -> None:
        if to == ZERO_ADDRESS:
            raise InvalidRecipient("mint to the zero address")
        self._balances[to] = self.balance_of(to) + amount
        self._total_supply += amount

    def _burn(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalance(f"cannot burn {amount} from {account}, holds {balance}")
        self._balances[account] = balance - amount
        self._total_supply -= amount


class Token(FungibleLedger):
    """สินทรัพย์ X หรือ Y ที่ใช้ในงานจำลองและการทดสอบ"""

    def __init__(self, name: str, symbol: str, decimals: int = 18, address: str = None) -> None:
        super().__init__(name, symbol, decimals)
        self.address = address or make_address(f"token:{symbol}")

    def mint(self, to: str, amount: int) -> None:
        """Faucet: เพิ่มเหรียญให้ Address (เฉพาะสภาพแวดล้อมจำลอง)"""
        self._mint(to, amount)

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.address})"


class WrappedNative(Token):
    """Token ห่อเหรียญ Native (เช่น WAVAX/WETH) พร้อมสมุดยอด Native"""

    def __init__(self, name: str = "Wrapped Native", symbol: str = "WNATIVE", decimals: int = 18,
                 address: str = None) -> None:
        super().__init__(name, symbol, decimals, address)
        self._native: Dict[str, int] = {}

    def native_balance_of(self, account: str) -> int:
        return self._native.get(account, 0)

    def fund_native(self, account: str, amount: int) -> None:
        self._native[account] = self.native_balance_of(account) + amount

    def send_native(self, sender: str, to: str, amount: int) -> None:
        if to == ZERO_ADDRESS:
            raise NativeTransferFailed("native transfer to the zero address")
        balance = self.native_balance_of(sender)
        if balance < amount:
            raise NativeTransferFailed(f"{sender} holds {balance} native, needs {amount}")
        self._native[sender] = balance - amount
        self._native[to] = self.native_balance_of(to) + amount

    def deposit(self, account: str, amount: int) -> None:
        """ห่อ Native -> Wrapped"""
        balance = self.native_balance_of(account)
        if balance < amount:
            raise NativeTransferFailed(f"{account} cannot wrap {amount}, holds {balance} native")
        self._native[account] = balance - amount
        self._mint(account, amount)

    def withdraw(self, account: str, amount: int) -> None:
        """แกะ Wrapped -> Native"""
        self._burn(account, amount)
        self._native[account] = self.native_balance_of(account) + amount
