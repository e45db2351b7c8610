from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AddAdminRequest(BaseModel):
    email: str | None = None


class SellerStatusUpdate(BaseModel):
    seller_status: str | None = None


class SuspendRequest(BaseModel):
    # Left untyped so a non-boolean reaches the service and gets its own message
    suspend: Any = None
    reason: str | None = None


class ProductStatusUpdate(BaseModel):
    status: str | None = None


class AdminFulfillRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    capture_id: str | None = Field(default=None, alias="captureId")
