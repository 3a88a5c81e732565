"""
Stream event data types.
Per request: at most one Started, any number of Delta/Usage, then exactly one
terminal event (Completed or Error).
"""

from dataclasses import dataclass
from typing import Optional, Union

from .types import ParsedResponse


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class Delta:
    text: str
    is_thinking: bool = False


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class Error:
    message: str
    code: Optional[int] = None
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class Completed:
    response: ParsedResponse


StreamEvent = Union[Started, Delta, Usage, Error, Completed]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (Completed, Error))
