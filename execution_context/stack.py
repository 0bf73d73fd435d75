# Copyright (C) 2021 Bosutech XXI S.L.
#
# nucliadb is offered under the AGPL v3.0 and as commercial software.
# For commercial licensing, contact us at info@nuclia.com.
#
# AGPL:
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

# Per-thread execution context stack.
#
# The stack is an immutable linked list of frames: pushing a frame or writing
# to the top frame builds a new head node, and the nodes below are shared.
# Capturing the current stack is therefore O(1) and the captured value never
# changes. The only mutable state is the thread-local pointer to the current
# head and the list of frames entered on this thread.
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

from execution_context import local, metrics
from execution_context.const import ABSENT
from execution_context.errors import ContextAllocationError, StackCorruptionError
from execution_context.hamt import EMPTY, ContextMap
from execution_context.settings import context_settings

logger = logging.getLogger(__name__)

stack_corruption_counter = metrics.Counter("execution_context_stack_corruptions")

_MISSING = object()


class ExecutionContext:
    """
    Snapshot of a stack of local context mappings, most recent first.
    """

    __slots__ = ("_mapping", "_back", "_depth")

    def __init__(self, mapping: ContextMap = EMPTY, back: Optional["ExecutionContext"] = None):
        self._mapping = mapping
        self._back = back
        self._depth = 1 if back is None else back._depth + 1

    @property
    def mapping(self) -> ContextMap:
        return self._mapping

    @property
    def back(self) -> Optional["ExecutionContext"]:
        return self._back

    @property
    def depth(self) -> int:
        return self._depth

    def lookup(self, item: Any, default: Any = ABSENT) -> Any:
        ec: Optional[ExecutionContext] = self
        while ec is not None:
            value = ec._mapping.get(item, _MISSING)
            if value is not _MISSING:
                return value
            ec = ec._back
        return default

    def with_top(self, mapping: ContextMap) -> "ExecutionContext":
        return ExecutionContext(mapping, self._back)

    def frames(self) -> Iterator[ContextMap]:
        ec: Optional[ExecutionContext] = self
        while ec is not None:
            yield ec._mapping
            ec = ec._back

    def vars(self) -> List[Any]:
        seen: Dict[int, Any] = {}
        for mapping in self.frames():
            for item in mapping:
                seen.setdefault(id(item), item)
        return list(seen.values())

    def squash(self) -> "ExecutionContext":
        """
        Return an equivalent execution context with a single frame.
        """
        merged = EMPTY
        for mapping in reversed(list(self.frames())):
            merged = merged.update(mapping)
        return ExecutionContext(merged)

    def __contains__(self, item: object) -> bool:
        return self.lookup(item, _MISSING) is not _MISSING

    def __repr__(self) -> str:
        return f"<ExecutionContext depth={self._depth}>"


class _Frame:
    __slots__ = ("local_context", "previous", "base")

    def __init__(
        self,
        local_context: "local.LocalContext",
        previous: ExecutionContext,
        base: ExecutionContext,
    ):
        self.local_context = local_context
        self.previous = previous
        self.base = base


class ThreadState(threading.local):
    def __init__(self):
        self.ec: Optional[ExecutionContext] = None
        self.frames: List[_Frame] = []


_state = ThreadState()


def current() -> ExecutionContext:
    ec = _state.ec
    if ec is None:
        ec = _state.ec = ExecutionContext()
    return ec


def snapshot() -> ExecutionContext:
    return current()


def new_execution_context() -> ExecutionContext:
    return ExecutionContext()


def lookup(item: Any, default: Any = ABSENT) -> Any:
    local.check_item(item)
    return current().lookup(item, default)


def set_in_top(item: Any, value: Any) -> None:
    local.check_item(item)
    ec = current()
    _state.ec = ec.with_top(local.assoc(ec.mapping, item, value))


def delete_in_top(item: Any) -> None:
    local.check_item(item)
    ec = current()
    if item in ec.mapping:
        _state.ec = ec.with_top(ec.mapping.delete(item))


def push(local_context: "local.LocalContext", base: Optional[ExecutionContext] = None) -> None:
    """
    Make `local_context` the top frame. The frame goes on top of the current
    stack, or on top of `base` when given.
    """
    previous = current()
    if base is None:
        base = previous

    if base.depth >= context_settings.context_max_depth:
        raise ContextAllocationError(
            f"Execution context stack reached its max depth of {context_settings.context_max_depth}"
        )

    local_context._enter()
    _state.frames.append(_Frame(local_context, previous, base))
    _state.ec = ExecutionContext(local_context.mapping, base)


def pop(local_context: "local.LocalContext") -> ContextMap:
    """
    Remove the top frame, store its mapping back into `local_context` and
    restore the stack that was current before the matching push.
    """
    if len(_state.frames) == 0:
        _corrupted("Frame popped from an empty execution context stack", local_context, None)

    frame = _state.frames[-1]
    if frame.local_context is not local_context:
        _corrupted("Frame popped out of order", local_context, frame.local_context)

    top = current()
    if top.back is not frame.base:
        _corrupted("Frames below the top were replaced", frame.base, top.back)

    _state.frames.pop()
    local_context._leave(top.mapping)
    _state.ec = frame.previous
    return top.mapping


def depth() -> int:
    return current().depth


def _corrupted(message: str, expected: object, found: object) -> None:
    if context_settings.context_metrics_enabled:
        stack_corruption_counter.inc()
    logger.critical(
        message,
        extra={"expected": repr(expected), "found": repr(found), "thread_ident": threading.get_ident()},
    )
    raise StackCorruptionError(message, expected=expected, found=found)
