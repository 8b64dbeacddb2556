"""Stream-and-accumulate combinator for upstream text fragments."""

from dataclasses import dataclass, field
from typing import AsyncIterator, List


@dataclass(frozen=True)
class StreamFragment:
    """One text fragment from upstream attempt number ``attempt`` (1-based)."""

    text: str
    attempt: int


@dataclass
class TextAccumulator:
    """Folds fragments of the current attempt into one string.

    A fragment from a newer attempt discards whatever the abandoned attempt
    produced, so partial output from a failed key never reaches the result.
    """

    attempt: int = 0
    _parts: List[str] = field(default_factory=list)

    def add(self, fragment: StreamFragment) -> None:
        if fragment.attempt != self.attempt:
            self.attempt = fragment.attempt
            self._parts = []
        if fragment.text:
            self._parts.append(fragment.text)

    @property
    def text(self) -> str:
        return "".join(self._parts)


async def accumulate(
    fragments: AsyncIterator[StreamFragment],
    accumulator: TextAccumulator,
) -> AsyncIterator[StreamFragment]:
    """Fold every fragment into *accumulator*, re-yielding the non-empty ones.

    Empty fragments only mark the start of an attempt.
    """
    async for fragment in fragments:
        accumulator.add(fragment)
        if fragment.text:
            yield fragment
