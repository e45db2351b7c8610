from pydantic import BaseModel, ConfigDict, Field


class ReceiptVerifyRequest(BaseModel):
    token: str | None = None
    email: str | None = None


class ReceiptResendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str | None = Field(default=None, alias="orderId")
