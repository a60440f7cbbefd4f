"""Test helpers: an in-process invoker that records calls and answers via a handler."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .parts import Part

Response = Union[bytes, str, Mapping[str, Any]]


@dataclass(frozen=True)
class RecordedCall:
    model: str
    prompt: str
    parts: Sequence[Part] = ()
    parameters: Dict[str, str] = field(default_factory=dict)


class RecordingInvoker:
    """Thread-safe fake invoker.

    *handler* receives each :class:`RecordedCall` and returns the response as
    bytes, text, or a mapping (dumped as JSON).  Exceptions raised by the
    handler propagate to the engine unchanged.  Without a handler every call
    answers ``{}``.

    Example::

        invoker = RecordingInvoker(lambda call: {"Name": "John"})
        ...
        assert invoker.call_count == 1
    """

    def __init__(self, handler: Optional[Callable[[RecordedCall], Response]] = None) -> None:
        self.handler = handler
        self.calls: List[RecordedCall] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def calls_for(self, model: str) -> List[RecordedCall]:
        with self._lock:
            return [call for call in self.calls if call.model == model]

    def generate(
        self,
        model: str,
        prompt: str,
        parts: Sequence[Part],
        *,
        parameters: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bytes:
        call = RecordedCall(model=model, prompt=prompt, parts=tuple(parts), parameters=dict(parameters or {}))
        with self._lock:
            self.calls.append(call)
        response = self.handler(call) if self.handler is not None else {}
        if isinstance(response, bytes):
            return response
        if isinstance(response, str):
            return response.encode("utf-8")
        return json.dumps(dict(response)).encode("utf-8")


__all__ = ["RecordedCall", "RecordingInvoker"]
