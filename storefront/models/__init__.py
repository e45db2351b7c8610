from storefront.models.user import User
from storefront.models.seller import Seller
from storefront.models.product import Product
from storefront.models.order import Order, OrderItem
from storefront.models.escrow import EscrowEntry
from storefront.models.payout import PayoutRequest
from storefront.models.admin import AdminAuditLog, AdminUser
from storefront.models.verification import EmailVerificationToken
from storefront.models.logs import EmailLog, WebhookLog

__all__ = [
    "User",
    "Seller",
    "Product",
    "Order",
    "OrderItem",
    "EscrowEntry",
    "PayoutRequest",
    "AdminUser",
    "AdminAuditLog",
    "EmailVerificationToken",
    "EmailLog",
    "WebhookLog",
]
