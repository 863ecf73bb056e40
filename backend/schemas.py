from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, validator

from roles import OrderStatus


def _check_username(v: str) -> str:
    if not v or len(v.strip()) == 0:
        raise ValueError("Username cannot be empty")
    if len(v.strip()) < 3:
        raise ValueError("Username must be at least 3 characters")
    if len(v) > 50:
        raise ValueError("Username cannot exceed 50 characters")
    return v.strip()


def _check_password(v: str) -> str:
    if not v or len(v) == 0:
        raise ValueError("Password cannot be empty")
    if len(v) < 4:
        raise ValueError("Password must be at least 4 characters")
    return v


def _check_amount(v: int) -> int:
    if v < 0:
        raise ValueError("Amount cannot be negative")
    if v > 100000000:
        raise ValueError("Amount is too high")
    return v


class UserCreate(BaseModel):
    username: str
    password: str
    role_id: int = 3

    @validator("username")
    def validate_username(cls, v: str) -> str:
        return _check_username(v)

    @validator("password")
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class UserUpdate(BaseModel):
    role_id: Optional[int] = None
    password: Optional[str] = None

    @validator("password")
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        # The admin form sends an empty password when it should stay unchanged.
        if not v:
            return None
        return _check_password(v)


class UserResponse(BaseModel):
    id: int
    username: str
    role: str
    role_id: int
    created_at: Optional[datetime] = None


class UserLogin(BaseModel):
    username: str
    password: str


class RoleResponse(BaseModel):
    id: int
    name: str


class OptionCreate(BaseModel):
    name: str
    price: int = 0

    @validator("name")
    def validate_name(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Option name cannot be empty")
        return v.strip()

    @validator("price")
    def validate_price(cls, v: int) -> int:
        return _check_amount(v)


class OptionResponse(BaseModel):
    id: int
    name: str
    price: int


class MenuCreate(BaseModel):
    name: str
    price: int
    category: str = "Coffee"
    stock: int = 0
    image_url: Optional[str] = None
    description: Optional[str] = None
    options: List[OptionCreate] = []

    @validator("name")
    def validate_name(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Menu name cannot be empty")
        if len(v) > 100:
            raise ValueError("Menu name cannot exceed 100 characters")
        return v.strip()

    @validator("price")
    def validate_price(cls, v: int) -> int:
        return _check_amount(v)

    @validator("stock")
    def validate_stock(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Stock cannot be negative")
        return v


class MenuUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[int] = None
    category: Optional[str] = None
    stock: Optional[int] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    options: Optional[List[OptionCreate]] = None

    @validator("name")
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if len(v.strip()) == 0:
            raise ValueError("Menu name cannot be empty")
        return v.strip()

    @validator("price")
    def validate_price(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return _check_amount(v)

    @validator("stock")
    def validate_stock(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("Stock cannot be negative")
        return v


class StockUpdate(BaseModel):
    stock: int

    @validator("stock")
    def validate_stock(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Stock cannot be negative")
        return v


class MenuResponse(BaseModel):
    id: int
    name: str
    price: int
    category: str
    stock: int
    image_url: Optional[str] = None
    description: Optional[str] = None
    options: List[OptionResponse]


# Order payloads keep the camelCase keys the storefront sends and reads.
class OrderLine(BaseModel):
    id: int
    name: Optional[str] = None
    quantity: int
    price: int
    selectedOptions: Optional[List[str]] = []

    @validator("selectedOptions")
    def validate_selected_options(cls, v: Optional[List[str]]) -> List[str]:
        return v or []

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than 0")
        if v > 1000:
            raise ValueError("Quantity cannot exceed 1000")
        return v

    @validator("price")
    def validate_price(cls, v: int) -> int:
        return _check_amount(v)


class OrderCreate(BaseModel):
    items: List[OrderLine]
    totalAmount: int

    @validator("totalAmount")
    def validate_total(cls, v: int) -> int:
        return _check_amount(v)


class OrderCreated(BaseModel):
    id: int
    message: str


class OrderItemResponse(BaseModel):
    id: int
    name: str
    quantity: int
    price: int
    selectedOptions: str


class OrderResponse(BaseModel):
    id: int
    totalAmount: int
    status: str
    createdAt: Optional[datetime] = None
    items: List[OrderItemResponse]


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderSummary(BaseModel):
    total: int
    received: int
    preparing: int
    completed: int
    cancelled: int
