"""Auth-related Pydantic schemas."""

from pydantic import BaseModel, Field

USERNAME_PATTERN = r"^\s*[A-Za-z0-9_.-]{3,64}\s*$"
EMAIL_PATTERN = r"^\s*[^@\s]+@[^@\s]+\.[^@\s]+\s*$"


class SignupRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=64)
    last_name: str = Field(min_length=1, max_length=64)
    username: str = Field(pattern=USERNAME_PATTERN)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    username: str  # username or email
    password: str


class LoginInfo(BaseModel):
    username: str
    email: str
    token: str


class ChangeEmailRequest(BaseModel):
    new_email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str


class ChangeUsernameRequest(BaseModel):
    new_username: str = Field(pattern=USERNAME_PATTERN)
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)


class TokenRequest(BaseModel):
    token: str


class ResetPasswordRequest(BaseModel):
    username_or_email: str


class ResetPasswordConfirm(BaseModel):
    token: str
    new_password: str = Field(min_length=8, max_length=128)
