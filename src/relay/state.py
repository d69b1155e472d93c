from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field


@dataclass(slots=True)
class CallState:
    """Timing and playback bookkeeping for one call.

    Owned by a single session and mutated only by its relay controller.
    """

    stream_id: str | None = None
    latest_inbound_timestamp: int = 0
    last_assistant_item_id: str | None = None
    pending_marks: deque[str] = field(default_factory=deque)
    response_start_timestamp: int | None = None
    response_done: bool = False
    mark_counter: int = 0

    @property
    def response_in_flight(self) -> bool:
        return self.response_start_timestamp is not None

    def next_mark_name(self) -> str:
        self.mark_counter += 1
        return f"mark{self.mark_counter}"

    def reset_response(self) -> None:
        self.pending_marks.clear()
        self.last_assistant_item_id = None
        self.response_start_timestamp = None
        self.response_done = False
