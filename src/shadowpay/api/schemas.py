"""Request/response models for the relay gateway."""

from typing import Annotated, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from shadowpay.identity import is_valid_address

# Strict so "5" or 5.0 or true are rejected rather than coerced
Lamports = Annotated[int, Field(gt=0, strict=True)]


def _check_address(value: Optional[str], label: str) -> Optional[str]:
    if value is not None and not is_valid_address(value):
        raise ValueError(f"Invalid {label} address")
    return value


class DepositRequest(BaseModel):
    """Deposit into the privacy pool."""

    amount: Lamports = Field(
        ...,
        validation_alias=AliasChoices("amount", "lamports"),
        description="Lamports to deposit",
    )
    recipient: Optional[str] = Field(None, description="Intended recipient (informational)")
    referrer: Optional[str] = Field(None, description="Referral address")
    deadline_ms: Optional[int] = Field(None, gt=0, description="Job deadline override")

    @field_validator("recipient")
    @classmethod
    def _recipient(cls, value: Optional[str]) -> Optional[str]:
        return _check_address(value, "recipient")

    @field_validator("referrer")
    @classmethod
    def _referrer(cls, value: Optional[str]) -> Optional[str]:
        return _check_address(value, "referrer")


class WithdrawRequest(BaseModel):
    """Withdraw from the privacy pool to a recipient."""

    amount: Lamports = Field(
        ...,
        validation_alias=AliasChoices("amount", "lamports"),
        description="Lamports to withdraw",
    )
    recipient: str = Field(..., description="Destination Solana address")
    referrer: Optional[str] = Field(None, description="Referral address")
    deadline_ms: Optional[int] = Field(None, gt=0, description="Job deadline override")

    @field_validator("recipient")
    @classmethod
    def _recipient(cls, value: str) -> str:
        return _check_address(value, "recipient")

    @field_validator("referrer")
    @classmethod
    def _referrer(cls, value: Optional[str]) -> Optional[str]:
        return _check_address(value, "referrer")


class DepositResponse(BaseModel):
    success: bool = True
    reference: str
    commitment: Optional[str] = None
    amount: int
    job_id: str
    duration_ms: int


class WithdrawResponse(BaseModel):
    success: bool = True
    reference: str
    recipient: str
    amount: int
    partial: bool = False
    fee: int = 0
    job_id: str
    duration_ms: int
