from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime


class UserRegister(BaseModel):
    """Registration form; camelCase keys from the web client are accepted too"""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)
    mobile_number: str = Field(
        ...,
        alias="mobileNumber",
        pattern=r'^[0-9]{10}$',
        description="10-digit mobile number",
    )
    college: str = Field(..., min_length=1, max_length=255)
    branch: str = Field(..., min_length=1, max_length=255)
    roll_number: str = Field(..., alias="rollNumber", min_length=1, max_length=100)


class UserLogin(BaseModel):
    # stripped the same way as at registration
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=1)


class UserResponse(BaseModel):
    """Public view of a user; never carries the password or reset fields"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    college: str
    branch: str
    roll_number: str
    mobile_number: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: UserResponse


class UserDetailsResponse(BaseModel):
    success: bool = True
    user: UserResponse


class ForgotPasswordResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    resetLink: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str
