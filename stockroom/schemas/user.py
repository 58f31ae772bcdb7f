from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from stockroom.models.user import UserRole

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    email: str = Field(min_length=5, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    role: UserRole = UserRole.EMPLOYEE
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    email: str | None = Field(default=None, min_length=5, max_length=320, pattern=EMAIL_PATTERN)
    # an empty string leaves the password unchanged
    password: str | None = Field(default=None, max_length=128)
    role: UserRole | None = None
    is_active: bool | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        return value.strip().lower() if value is not None else None

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str | None) -> str | None:
        if value is None or value.strip() == "":
            return None
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value


class UserPage(BaseModel):
    items: list[UserOut]
    page: int
    limit: int
    total: int
    total_pages: int
