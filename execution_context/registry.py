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

import logging
import weakref
from typing import Any, Iterator, List, Optional

from execution_context import metrics, stack
from execution_context.const import ABSENT
from execution_context.settings import context_settings

logger = logging.getLogger(__name__)

items_created_counter = metrics.Counter("execution_context_items")


class ContextItem:
    """
    Opaque key for values stored in the execution context.

    Two items are never equal unless they are the same object, whatever
    their descriptions are.
    """

    __slots__ = ("_description", "__weakref__")

    def __init__(self, description: str):
        self._description = description

    @property
    def description(self) -> str:
        return self._description

    def get(self, default: Any = ABSENT) -> Any:
        """
        Return the value bound in the closest frame of the current
        execution context, or `default`.
        """
        return stack.lookup(self, default)

    def set(self, value: Any) -> None:
        stack.set_in_top(self, value)

    def set_scoped(self, value: Any) -> "ScopedValue":
        """
        Set the value and return a context manager that restores the top
        frame binding that was there before:

            with item.set_scoped(42):
                ...
        """
        top = stack.current().mapping
        found = self in top
        previous = top[self] if found else None
        stack.set_in_top(self, value)
        return ScopedValue(self, previous, found)

    def __repr__(self) -> str:
        return f"<ContextItem {self._description!r} at {id(self):#x}>"


class ScopedValue:
    def __init__(self, item: ContextItem, previous: Any, found: bool):
        self.item = item
        self.previous = previous
        self.found = found
        self._restored = False

    def restore(self) -> None:
        if self._restored:
            return
        self._restored = True
        if self.found:
            stack.set_in_top(self.item, self.previous)
        else:
            stack.delete_in_top(self.item)

    def __enter__(self) -> "ScopedValue":
        return self

    def __exit__(self, *args) -> None:
        self.restore()


class ContextItemRegistry:
    """
    Mints context items. Only weak references are kept: an item that
    nobody references anymore disappears from the registry.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._items: "weakref.WeakSet[ContextItem]" = weakref.WeakSet()

    def create(self, description: str) -> ContextItem:
        item = ContextItem(description)
        self._items.add(item)
        if context_settings.context_metrics_enabled:
            items_created_counter.inc()
        logger.debug(f"Created context item {description!r}", extra={"registry": self.name})
        return item

    def live_items(self) -> List[ContextItem]:
        return list(self._items)

    def find(self, description: str) -> Optional[ContextItem]:
        for item in self._items:
            if item.description == description:
                return item
        return None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ContextItem]:
        return iter(self.live_items())


default_registry = ContextItemRegistry()


def new_context_item(description: str) -> ContextItem:
    return default_registry.create(description)
