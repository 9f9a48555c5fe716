"""
Render a two-channel (reasoning + answer) upstream stream as one text stream.

Reasoning text is wrapped in a single ``<think>...</think>`` block placed
right before the first reasoning delta and closed right before the first
answer delta that follows it (or at end of stream). The concatenation of
everything ``feed`` returns is always equal to ``transcript``.
"""

from __future__ import annotations

from enum import Enum

from .transports.base import EVENT_CONTENT, EVENT_REASONING, RelayEvent

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class MuxState(str, Enum):
    IDLE = "idle"
    IN_REASONING = "in_reasoning"
    IN_CONTENT = "in_content"
    DONE = "done"
    ERROR = "error"


class ReasoningMultiplexer:
    def __init__(self) -> None:
        self.state = MuxState.IDLE
        self.delta_count = 0
        self.error: str | None = None
        self._reasoning_opened = False
        self._chunks: list[str] = []

    @property
    def transcript(self) -> str:
        return "".join(self._chunks)

    @property
    def finished(self) -> bool:
        return self.state in (MuxState.DONE, MuxState.ERROR)

    def feed(self, event: RelayEvent) -> list[str]:
        """
        Apply one event and return the text chunks to emit, in order.

        Events arriving after a terminal event are ignored.
        """
        if self.finished:
            return []

        if event.is_terminal:
            return self._finish(event)

        if not event.text:
            return []

        out: list[str] = []
        if event.kind == EVENT_REASONING:
            if self.state != MuxState.IN_REASONING and not self._reasoning_opened:
                out.append(THINK_OPEN)
                self._reasoning_opened = True
                self.state = MuxState.IN_REASONING
            # Reasoning that resumes after the block was closed stays inline;
            # the output never carries a second <think>.
        elif event.kind == EVENT_CONTENT:
            if self.state == MuxState.IN_REASONING:
                out.append(THINK_CLOSE)
            self.state = MuxState.IN_CONTENT
        else:
            return []

        out.append(event.text)
        self.delta_count += 1
        self._chunks.extend(out)
        return out

    def _finish(self, event: RelayEvent) -> list[str]:
        # An open block is closed on both outcomes.
        out: list[str] = []
        if self.state == MuxState.IN_REASONING:
            out.append(THINK_CLOSE)
        if event.ok:
            self.state = MuxState.DONE
        else:
            self.state = MuxState.ERROR
            self.error = event.error
        self._chunks.extend(out)
        return out


__all__ = ["MuxState", "ReasoningMultiplexer", "THINK_CLOSE", "THINK_OPEN"]
