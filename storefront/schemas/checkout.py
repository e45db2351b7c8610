from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    license_type: str = Field(default="personal", alias="licenseType")
    quantity: Any = 1
    price: float | None = None

    def as_line_item(self) -> dict:
        return {
            "product_id": self.product_id,
            "license_type": self.license_type,
            "quantity": self.quantity,
            "price": self.price,
        }


class CreateOrderRequest(BaseModel):
    items: list[CartItem] = []
    total: float | None = None  # client total, informational only


class CaptureOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str | None = Field(default=None, alias="orderID")
    items: list[CartItem] = []
