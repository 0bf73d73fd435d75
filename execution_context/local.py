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

import threading
from typing import Any, Iterator, Optional, Tuple

from execution_context import registry
from execution_context.const import ABSENT
from execution_context.errors import (
    ContextAllocationError,
    InvalidContextError,
    InvalidContextItemError,
)
from execution_context.hamt import EMPTY, ContextMap


def check_item(key: object) -> None:
    if not isinstance(key, registry.ContextItem):
        raise InvalidContextItemError(key)


class LocalContext:
    """
    Values written by one frame of execution.

    The mapping a local context holds is immutable: `with_set` returns a new
    local context and leaves this one alone. The object itself is the cell a
    generator, coroutine or `run_with_local_context` call owns; when the
    frame leaves the stack, whatever it wrote is stored back here.
    """

    __slots__ = ("_mapping", "_owner", "__weakref__")

    def __init__(self, mapping: ContextMap = EMPTY):
        self._mapping = mapping
        # ident of the thread that currently has this frame on its stack
        self._owner: Optional[int] = None

    @classmethod
    def empty(cls) -> "LocalContext":
        return cls()

    @property
    def mapping(self) -> ContextMap:
        return self._mapping

    @property
    def pristine(self) -> bool:
        return self._mapping is EMPTY

    @property
    def entered(self) -> bool:
        return self._owner is not None

    def get(self, item: "registry.ContextItem", default: Any = ABSENT) -> Any:
        check_item(item)
        return self._mapping.get(item, default)

    def with_set(self, item: "registry.ContextItem", value: Any) -> "LocalContext":
        check_item(item)
        return LocalContext(assoc(self._mapping, item, value))

    def with_delete(self, item: "registry.ContextItem") -> "LocalContext":
        check_item(item)
        if item not in self._mapping:
            return self
        return LocalContext(self._mapping.delete(item))

    def items(self) -> Iterator[Tuple["registry.ContextItem", Any]]:
        return self._mapping.items()

    def __contains__(self, item: object) -> bool:
        return item in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def __iter__(self) -> Iterator["registry.ContextItem"]:
        return iter(self._mapping)

    def __repr__(self) -> str:
        state = "entered" if self.entered else "idle"
        return f"<LocalContext {len(self._mapping)} items, {state}>"

    def _enter(self) -> None:
        # Check and claim are two steps and no lock is taken: two threads
        # entering the same idle local context at the same instant are only
        # caught best-effort. Entering one that is already entered always fails.
        ident = threading.get_ident()
        if self._owner is not None:
            if self._owner != ident:
                raise InvalidContextError(f"{self!r} is in use by another thread")
            raise InvalidContextError(f"{self!r} is already entered")
        self._owner = ident

    def _leave(self, mapping: ContextMap) -> None:
        self._mapping = mapping
        self._owner = None


def assoc(mapping: ContextMap, item: "registry.ContextItem", value: Any) -> ContextMap:
    try:
        return mapping.set(item, value)
    except MemoryError as exc:
        raise ContextAllocationError(f"Could not store a value for {item!r}") from exc
