"""
统一结果类型
Transport → Adapter → Aggregator 各层均返回 Ok / Err，而不是抛出异常
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Optional, Tuple, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """失败类型枚举"""

    NO_NETWORK = "NO_NETWORK"
    TIMEOUT = "TIMEOUT"
    HTTP_STATUS = "HTTP_STATUS"
    INVALID_SHAPE = "INVALID_SHAPE"
    ALL_SOURCES_FAILED = "ALL_SOURCES_FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class FetchError:
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    causes: Tuple["FetchError", ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.value} {self.status_code}] {self.message}"
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "causes": [c.to_dict() for c in self.causes],
        }


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: FetchError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def err(kind: ErrorKind, message: str, status_code: Optional[int] = None) -> Err:
    """快捷构造 Err"""
    return Err(FetchError(kind=kind, message=message, status_code=status_code))
