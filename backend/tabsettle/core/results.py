"""Tagged results for operations whose failure is an expected outcome.

Conflicts such as "table already open" are part of the normal flow between
terminals, so the order and ticket services return them as values instead of
raising.  Callers branch on ``isinstance(result, Err)`` and on the conflict
``kind``, never on message text.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E


Result = Union[Ok[T], Err[E]]
