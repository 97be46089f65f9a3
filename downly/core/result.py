from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a best-effort step.

    Callers of best-effort operations (filename lookup, cleanup, optional
    provisioning) get one of these instead of an exception and decide
    explicitly whether to use or discard it.
    """
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.error is None else default

    @classmethod
    def success(cls, value: T = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome[T]":
        return cls(error=error)


async def attempt(func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> Outcome[T]:
    """Await ``func`` and fold any ``Exception`` into an ``Outcome``"""
    try:
        return Outcome.success(await func(*args, **kwargs))
    except Exception as e:
        return Outcome.failure(e)
