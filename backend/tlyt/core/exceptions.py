"""Chip economy error taxonomy

Services raise these; the API layer maps them to responses in
tlyt.core.middleware. Only InsufficientBalanceError and RateLimitedError carry
details that are safe to show to the user.
"""
from typing import Optional

GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again in a moment."


class ChipEconomyError(Exception):
    """Base class for all chip economy errors"""
    status_code = 500

    def user_message(self) -> str:
        return GENERIC_RETRY_MESSAGE


class AccountNotFoundError(ChipEconomyError):
    status_code = 404

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class UnknownAccountError(ChipEconomyError):
    """Payment notification references an account that does not exist"""
    status_code = 400

    def __init__(self, client_reference: Optional[str]):
        super().__init__(f"No account for client reference {client_reference!r}")
        self.client_reference = client_reference


class UnknownPackageError(ChipEconomyError):
    status_code = 400

    def __init__(self, price_ref: Optional[str]):
        super().__init__(f"No chip package for price {price_ref!r}")
        self.price_ref = price_ref


class InsufficientBalanceError(ChipEconomyError):
    status_code = 402

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = max(0, required - available)
        super().__init__(
            f"Insufficient chips: required {required}, available {available}"
        )

    def user_message(self) -> str:
        noun = "chip" if self.shortfall == 1 else "chips"
        return f"You need {self.shortfall} more {noun} to run this analysis."


class InvalidDurationError(ChipEconomyError):
    status_code = 422


class InvalidAmountError(ChipEconomyError):
    status_code = 422


class AlreadyProcessedError(ChipEconomyError):
    status_code = 409

    def __init__(self, video_id: str, analysis_id: str):
        super().__init__(f"Video {video_id} already analysed ({analysis_id})")
        self.video_id = video_id
        self.analysis_id = analysis_id

    def user_message(self) -> str:
        return "This video has already been analysed."


class RateLimitedError(ChipEconomyError):
    status_code = 429

    def __init__(self, retry_after: int, window: int):
        super().__init__(f"Trial cooldown active, retry in {retry_after}s")
        self.retry_after = retry_after
        self.window = window

    def user_message(self) -> str:
        window_minutes = max(1, self.window // 60)
        retry_minutes = max(1, -(-self.retry_after // 60))
        return (
            f"Trial accounts can run one analysis every {window_minutes} minutes. "
            f"Try again in {retry_minutes} minute{'s' if retry_minutes != 1 else ''}."
        )


class ExternalWorkFailedError(ChipEconomyError):
    status_code = 502


class SignatureInvalidError(ChipEconomyError):
    status_code = 400


class StorageError(ChipEconomyError):
    status_code = 503


class ResourceNotFoundError(ChipEconomyError):
    status_code = 404


class CheckoutError(ChipEconomyError):
    status_code = 400

    def user_message(self) -> str:
        return str(self)
