"""
binvault/utils/errors.py
ลำดับชั้นของ Exception ทั้งหมดในระบบ Vault/Strategy

ทุก Error จะยกเลิกการเรียกทั้งหมด (ไม่มีการ Retry ภายใน Engine)
ผู้เรียกจะได้รับชื่อ Error ที่เจาะจง เพื่อให้เครื่องมือภายนอกแยกแยะสาเหตุได้
"""


class VaultEngineError(Exception):
    """ต้นตระกูลของ Error ทั้งหมดใน binvault"""


# --- Validation ---
class ValidationError(VaultEngineError, ValueError):
    """ข้อมูลขาเข้าไม่ถูกต้อง"""


class ZeroAmount(ValidationError):
    pass


class ZeroShares(ValidationError):
    pass


class InvalidRecipient(ValidationError):
    pass


class InvalidRound(ValidationError):
    pass


class InvalidShares(ValidationError):
    pass


class InvalidRange(ValidationError):
    pass


class InvalidAddedRange(ValidationError):
    pass


class InvalidRemovedRange(ValidationError):
    pass


class InvalidLength(ValidationError):
    pass


class RangeTooWide(ValidationError):
    pass


class InvalidPercentage(ValidationError):
    pass


class InvalidFee(ValidationError):
    pass


class InvalidToken(ValidationError):
    pass


class InsufficientBalance(ValidationError):
    pass


class InsufficientAllowance(ValidationError):
    pass


class InsufficientQueuedShares(ValidationError):
    pass


# --- Authorization ---
class AuthorizationError(VaultEngineError, PermissionError):
    """ผู้เรียกไม่มีสิทธิ์ใช้งานฟังก์ชันนี้"""


class Unauthorized(AuthorizationError):
    def __init__(self, caller: str, capability) -> None:
        super().__init__(f"{caller} is not allowed: requires {capability.name}")
        self.caller = caller
        self.capability = capability


# --- State ---
class StateError(VaultEngineError, RuntimeError):
    """สถานะของระบบไม่อนุญาตให้ทำรายการ"""


class InvalidStrategy(StateError):
    pass


class SameStrategy(StateError):
    pass


class RangeAlreadySet(StateError):
    pass


class NotInEmergencyMode(StateError):
    pass


class NoQueuedWithdrawal(StateError):
    pass


class DepositsPaused(StateError):
    pass


class AlreadyInitialized(StateError):
    pass


class Reentrancy(StateError):
    pass


# --- Arithmetic / External ---
class ArithmeticExternalError(VaultEngineError):
    """ตัวเลขเกินขอบเขต หรือ Collaborator ภายนอกตอบกลับผิดปกติ"""


class DistributionOverflow(ArithmeticExternalError):
    pass


class InvalidPrice(ArithmeticExternalError):
    pass


class ActiveIdSlippage(ArithmeticExternalError):
    pass


class SwapFailed(ArithmeticExternalError):
    pass


class ZeroCross(ArithmeticExternalError):
    pass


class NoNativeToken(ArithmeticExternalError):
    pass


class InvalidNativeAmount(ArithmeticExternalError):
    pass


class NativeTransferFailed(ArithmeticExternalError):
    pass
