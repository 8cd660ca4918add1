from pydantic import BaseModel, Field, field_validator
from typing import Literal
from datetime import datetime

# remainingBalance reported for unauthorized charges
REJECTED_BALANCE = -1

# Used when a request omits a field or sends null for it
DEFAULT_ACCOUNT = "account"
DEFAULT_CHARGE = 10


class ResetRequest(BaseModel):
    account: str = Field(DEFAULT_ACCOUNT, description="Account identifier")

    @field_validator('account', mode='before')
    @classmethod
    def default_account(cls, v):
        return DEFAULT_ACCOUNT if v is None else v


class ChargeRequest(BaseModel):
    account: str = Field(DEFAULT_ACCOUNT, description="Account identifier")
    charges: int = Field(DEFAULT_CHARGE, description="Amount to debit from the account balance")

    @field_validator('account', mode='before')
    @classmethod
    def default_account(cls, v):
        return DEFAULT_ACCOUNT if v is None else v

    @field_validator('charges', mode='before')
    @classmethod
    def default_charges(cls, v):
        return DEFAULT_CHARGE if v is None else v

    @field_validator('charges')
    @classmethod
    def validate_charges(cls, v):
        if v <= 0:
            raise ValueError('Charges must be a positive integer')
        return v


class ChargeResult(BaseModel):
    isAuthorized: bool = Field(..., description="Whether the charge was authorized")
    remainingBalance: int = Field(
        ...,
        description="Balance after the charge, or -1 when not authorized"
    )
    charges: int = Field(..., description="Amount actually debited (0 when not authorized)")

    @classmethod
    def authorized(cls, remaining_balance: int, charges: int) -> "ChargeResult":
        return cls(isAuthorized=True, remainingBalance=remaining_balance, charges=charges)

    @classmethod
    def rejected(cls) -> "ChargeResult":
        return cls(isAuthorized=False, remainingBalance=REJECTED_BALANCE, charges=0)


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"] = Field(..., description="Service health status")
    store: str = Field(..., description="Balance store backend in use")
    timestamp: datetime = Field(default_factory=datetime.now)
