from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard API response envelope."""

    success: bool
    data: T | None = None
    message: str | None = None
    count: int | None = None

    @classmethod
    def ok(
        cls,
        data: T,
        message: str | None = None,
        count: int | None = None,
    ) -> "ApiResponse[T]":
        return cls(success=True, data=data, message=message, count=count)

    @classmethod
    def fail(cls, message: str, data: T | None = None) -> "ApiResponse[T]":
        return cls(success=False, data=data, message=message)
