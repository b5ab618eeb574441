from datetime import datetime
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.config import ConfigDict

from .errors import ValidationError
from .images import render
from .utils import strip_tags

CATEGORIES = (
    "Electronics",
    "Clothing",
    "Home & Kitchen",
    "Books",
    "Sports & Outdoors",
    "Beauty",
    "Toys & Games",
    "Food & Grocery",
    "Other",
)

M = TypeVar("M", bound=BaseModel)


def _is_missing(err) -> bool:
    # absent, or an empty string where at least one character is required
    if err["type"] == "missing":
        return True
    return err["type"] == "string_too_short" and err.get("ctx", {}).get("min_length") == 1


def validate(model: Type[M], data, missing_message: Optional[str] = None) -> M:
    """Build ``model`` from raw input, raising our ValidationError on failure.

    ``missing_message`` replaces the detail only when every error is a missing
    or blank required field.
    """
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_input=False)
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in errors
        ]
        if missing_message is not None and errors and all(_is_missing(err) for err in errors):
            message = missing_message
        else:
            first = details[0] if details else {"field": "", "message": "invalid input"}
            message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        raise ValidationError(message, error=details) from e


# -------------------- Users --------------------

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=32)
    zipcode: str = Field(..., min_length=1, max_length=16)
    password: str = Field(..., min_length=1)

    @field_validator("name", "email", "phone", "zipcode", mode="before")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    def lower_email(cls, v: str):
        return v.lower()


class UserLogin(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    def lower_email(cls, v: str):
        return v.strip().lower()


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    role: str = "user"

    model_config = ConfigDict(from_attributes=True)


# -------------------- Products --------------------

def _check_category(v: Optional[str]):
    if v is not None and v not in CATEGORIES:
        raise ValueError(f"category must be one of: {', '.join(CATEGORIES)}")
    return v


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str
    stock: int = Field(..., ge=0)

    @field_validator("name", "description", mode="before")
    def clean_text(cls, v):
        return strip_tags(v) if isinstance(v, str) else v

    @field_validator("category", mode="before")
    def strip_category(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("category")
    def known_category(cls, v):
        return _check_category(v)


class ProductUpdate(BaseModel):
    """Fields an update may overwrite; omitted fields keep their stored value."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    category: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "description", mode="before")
    def clean_text(cls, v):
        return strip_tags(v) if isinstance(v, str) else v

    @field_validator("category", mode="before")
    def strip_category(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("category")
    def known_category(cls, v):
        return _check_category(v)


class ProductRead(BaseModel):
    id: int
    name: str
    description: str
    images: List[str]
    price: float
    category: str
    stock: int
    isActive: bool
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_model(cls, product) -> "ProductRead":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            images=[render(img) for img in product.images],
            price=product.price,
            category=product.category,
            stock=product.stock,
            isActive=product.is_active,
            createdAt=product.created_at,
            updatedAt=product.updated_at,
        )


class Page(BaseModel):
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        # ceil without floats
        return -(-self.total // self.limit)

    @property
    def has_next_page(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1
