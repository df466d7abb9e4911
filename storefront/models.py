"""
Pydantic models for the storefront: catalog, cart, auth, orders and payments.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from storefront.config import Config

GUEST_CART_ID = "guest-cart"
CENTS = Decimal("0.01")


def utc_now_iso() -> str:
    """Timestamp in the backend's ISO-8601 format"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WireModel(BaseModel):
    """Base for models exchanged with the backend using its field names"""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# Auth

class User(WireModel):
    """Authenticated user as returned by the backend"""
    id: str = Field(..., alias="_id", description="User identifier")
    email: str = Field(..., description="Login email")
    name: str = Field(..., description="Display name")
    role: str = Field("user", description="Account role")


# Catalog

class ProductColor(WireModel):
    name: str
    code: Optional[str] = None
    stock: int = 0


class ProductImage(WireModel):
    image: str
    id: Optional[str] = Field(None, alias="_id")

    @computed_field
    @property
    def url(self) -> str:
        """Absolute image URL; upload paths are served from the asset host"""
        if self.image.startswith(("http://", "https://", "//")):
            return self.image
        return f"{Config.ASSET_BASE_URL.rstrip('/')}/{self.image.lstrip('/')}"


class Product(WireModel):
    """Catalog product; unknown backend fields are kept so a guest cart round-trips it"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., alias="_id", description="Product identifier")
    name: str = Field(..., description="Product title")
    slug: str = Field("", description="URL slug")
    price: Decimal = Field(..., ge=0, description="Current unit price")
    stock: int = Field(0, description="Units in stock")
    colors: List[ProductColor] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)

    def available_stock(self, color_name: Optional[str] = None) -> int:
        """Stock for a color variant, or for the product when no variant applies"""
        if color_name:
            for color in self.colors:
                if color.name == color_name:
                    return max(0, color.stock)
        return max(0, self.stock)


class Category(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., alias="_id")
    name: str
    slug: str = ""
    description: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


class ContactSubmission(WireModel):
    name: str
    email: str
    phone: Optional[str] = None
    subject: str
    message: str


# Cart

class CartItem(WireModel):
    """Cart line; price is the unit price snapshot taken when added"""
    id: str = Field(..., alias="_id", description="Cart item identifier")
    product: Product
    quantity: int = Field(..., ge=1, description="Item quantity")
    price: Decimal = Field(..., description="Unit price at time of add")
    selected_color_name: Optional[str] = Field(None, alias="selectedColor")
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")

    @field_validator("selected_color_name", mode="before")
    @classmethod
    def color_name_only(cls, v: Any) -> Any:
        # Server carts may send the full color object
        if isinstance(v, dict):
            return v.get("name")
        return v

    def matches(self, product_id: str, color_name: Optional[str]) -> bool:
        return self.product.id == product_id and self.selected_color_name == color_name


class Cart(WireModel):
    id: str = Field(GUEST_CART_ID, alias="_id", description="Cart identifier")
    owner_ref: str = Field("", alias="user", description="Owning user id, empty for guests")
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = Field(0, alias="totalItems")
    total_price: Decimal = Field(Decimal("0"), alias="totalPrice")
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")

    @field_validator("items", mode="before")
    @classmethod
    def items_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("owner_ref", mode="before")
    @classmethod
    def owner_id_only(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, dict):
            return v.get("_id", "")
        return v

    def recompute_totals(self) -> None:
        """Derive totals from the items; never adjusted incrementally"""
        self.total_items = sum(item.quantity for item in self.items)
        self.total_price = sum(
            (item.product.price * item.quantity for item in self.items), Decimal("0")
        )

    def find_item(self, item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class CartSummary(BaseModel):
    """Cart page totals"""
    item_count: int
    subtotal: Decimal
    tax: Decimal
    total: Decimal

    @classmethod
    def for_cart(cls, cart: Cart, tax_rate: Decimal) -> "CartSummary":
        subtotal = Decimal(cart.total_price).quantize(CENTS, rounding=ROUND_HALF_UP)
        tax = (subtotal * tax_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        return cls(
            item_count=cart.total_items,
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
        )


class AddToCartRequest(BaseModel):
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(1, ge=1, description="Quantity to add")
    color: Optional[str] = Field(None, description="Selected color name")


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; zero or less removes the item")


# Checkout

class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"


class ShippingAddress(WireModel):
    full_name: str = Field(..., alias="fullName")
    email: str
    phone: str
    address: str
    city: str
    state: str
    postal_code: str = Field(..., alias="postalCode")
    country: str


class ShippingForm(BaseModel):
    """Checkout form as entered by the customer"""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = Field(default_factory=lambda: Config.DEFAULT_COUNTRY)

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "first_name", "last_name", "email", "phone", "address", "city", "state", "pincode",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name).strip()]

    def to_shipping_address(self) -> ShippingAddress:
        return ShippingAddress(
            full_name=self.full_name,
            email=self.email,
            phone=self.phone,
            address=self.address,
            city=self.city,
            state=self.state,
            postal_code=self.pincode,
            country=self.country,
        )


class OrderLine(WireModel):
    product: str = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1)


class GuestUser(WireModel):
    name: str
    email: str
    phone: str


class OrderRequest(WireModel):
    products: List[OrderLine]
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    guest_user: Optional[GuestUser] = Field(None, alias="guestUser")


class OrderReceipt(WireModel):
    """What the backend returns on order creation"""
    order_id: str = Field(..., alias="orderId")
    final_amount: Decimal = Field(..., alias="finalAmount")


class OrderProduct(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    product: Any
    quantity: int
    price: Optional[Decimal] = None
    name: Optional[str] = None


class Order(WireModel):
    """Order as shown in order history"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., alias="_id")
    order_id: str = Field(..., alias="orderId")
    products: List[OrderProduct] = Field(default_factory=list)
    total_amount: Decimal = Field(Decimal("0"), alias="totalAmount")
    shipping_address: Optional[Dict[str, Any]] = Field(None, alias="shippingAddress")
    payment_method: str = Field("", alias="paymentMethod")
    payment_status: str = Field("pending", alias="paymentStatus")
    order_status: str = Field("pending", alias="orderStatus")
    shipping_fee: Optional[Decimal] = Field(None, alias="shippingFee")
    tax_amount: Optional[Decimal] = Field(None, alias="taxAmount")
    final_amount: Optional[Decimal] = Field(None, alias="finalAmount")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")


# Payments

class GatewayOrder(WireModel):
    """Payment-provider side order minted by the backend"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    amount: Optional[int] = None
    currency: str = "INR"
    receipt: Optional[str] = None
    status: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.id) and bool(self.amount)


class PaymentVerification(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class VerificationResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool = False
    message: str = ""
    order: Optional[Any] = None
    shipment: Optional[Dict[str, Any]] = None


class WidgetPrefill(BaseModel):
    name: str
    email: str
    contact: str


class WidgetOptions(BaseModel):
    """Options handed to the gateway checkout widget constructor"""
    key: Optional[str]
    amount: int
    currency: str
    name: str
    description: str = "Order Payment"
    image: str
    order_id: str
    prefill: WidgetPrefill
    notes: Dict[str, str]
    theme: Dict[str, str]


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentOutcome(BaseModel):
    """Terminal outcome of collecting a payment through the widget"""
    status: PaymentStatus
    proof: Optional[PaymentVerification] = None
    reason: Optional[str] = None

    @classmethod
    def succeeded(cls, proof: PaymentVerification) -> "PaymentOutcome":
        return cls(status=PaymentStatus.SUCCEEDED, proof=proof)

    @classmethod
    def failed(cls, reason: str) -> "PaymentOutcome":
        return cls(status=PaymentStatus.FAILED, reason=reason)

    @classmethod
    def cancelled(cls) -> "PaymentOutcome":
        return cls(status=PaymentStatus.CANCELLED)


class PaymentFailureReport(BaseModel):
    description: str = Field("Payment failed", description="Gateway error description")
    code: Optional[str] = None


class CheckoutStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    EMPTY_CART = "empty_cart"
    INVALID = "invalid"
    AUTH_REQUIRED = "auth_required"
    FAILED = "failed"
    CANCELLED = "cancelled"
    VERIFICATION_FAILED = "verification_failed"
    SUCCEEDED = "succeeded"


class CheckoutResult(BaseModel):
    """Outcome of one checkout attempt as shown to the customer"""
    status: CheckoutStatus
    message: str = ""
    order_id: Optional[str] = None
    redirect_url: Optional[str] = None
    missing_fields: List[str] = Field(default_factory=list)


# Service requests

class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class GuestPasswordRequest(BaseModel):
    """Account creation offered after a guest checkout"""
    email: str
    password: str
    order_id: str


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None
