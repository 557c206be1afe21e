from pydantic import Field

from app.schemas.base import CamelModel
from app.schemas.user import UserResponse


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3, max_length=254)
    password: str
    name: str


class LoginRequest(CamelModel):
    email: str
    password: str


class AuthResponse(CamelModel):
    success: bool = True
    message: str
    token: str
    user: UserResponse


class MessageResponse(CamelModel):
    success: bool = True
    message: str
