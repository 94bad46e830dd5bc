from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RegisterIn(BaseModel):
    user_id: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9]+$")
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    created_at: datetime = Field(..., alias="createdAt")


class TokenOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    user_id: str = Field(..., alias="userId")
    expires_in: int = Field(..., alias="expiresIn")
