from pydantic import BaseModel, Field, field_validator

from stockroom.schemas.user import EMAIL_PATTERN, UserCreate, UserOut


class LoginRequest(BaseModel):
    email: str = Field(min_length=5, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RegisterRequest(UserCreate):
    pass


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class GenericMessageResponse(BaseModel):
    message: str
