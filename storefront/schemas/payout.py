from typing import Any

from pydantic import BaseModel


class PayoutRequestCreate(BaseModel):
    amount: Any = None


class PayoutStatusUpdate(BaseModel):
    status: str | None = None
    note: str | None = None


class PayoutFailRequest(BaseModel):
    reason: str | None = None
