from typing import Generic, Literal, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    ok: Literal[True] = True
    data: T


class ErrorEnvelope(BaseModel):
    ok: Literal[False] = False
    error_kind: str
    message: str
    reason: str | None = None
