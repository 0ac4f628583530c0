from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from typing import Annotated, Literal, Optional

# Each document class maps to one collection (see USERS and PRODUCTS in database.py)

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

Email = Annotated[str, StringConstraints(strip_whitespace=True, pattern=EMAIL_PATTERN)]
Role = Literal["admin", "customer", "user"]
Price = Annotated[float, Field(ge=0, strict=True)]
Stock = Annotated[int, Field(ge=0, strict=True)]
ProductName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2)]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Login email (unique)")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("customer", description="user role: admin | customer | user")
    is_active: bool = True


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    is_active: bool = True


# Models for requests

class LoginRequest(BaseModel):
    email: Email
    password: str = Field(..., min_length=1)


class UserLoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    email: Email
    password: str = Field(..., min_length=6)
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    role: Role = "user"


class UserUpdateRequest(BaseModel):
    # password, id and email are not fields here, so they never reach storage
    model_config = ConfigDict(extra="ignore")

    name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class ProductCreateRequest(BaseModel):
    name: ProductName
    price: Price
    category: Optional[str] = None
    stock: Optional[Stock] = None
    description: Optional[str] = None


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[ProductName] = None
    price: Optional[Price] = None
    category: Optional[str] = None
    stock: Optional[Stock] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


# Models for responses

class TokenInfo(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: str = "1h"


class PublicUser(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: Optional[str] = None


class LoginData(BaseModel):
    user: PublicUser
    token: TokenInfo


