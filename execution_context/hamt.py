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

# Persistent hash array mapped trie.
#
# Every update returns a new map; untouched branches are shared between the
# old and the new version, so an update costs O(log32 n) allocations instead
# of a full copy. Keys are compared by identity first and then by equality.
from collections.abc import Mapping
from typing import Any, Iterator, Optional, Tuple, Union

_BITS = 5
_WIDTH = 1 << _BITS
_MASK = _WIDTH - 1
_HASH_MASK = 0xFFFFFFFF


def _hash(key: Any) -> int:
    return hash(key) & _HASH_MASK


def _bitpos(key_hash: int, shift: int) -> int:
    return 1 << ((key_hash >> shift) & _MASK)


def _index(bitmap: int, bit: int) -> int:
    return bin(bitmap & (bit - 1)).count("1")


def _same_key(a: Any, b: Any) -> bool:
    return a is b or a == b


class _Entry:
    __slots__ = ("hash", "key", "value")

    def __init__(self, key_hash: int, key: Any, value: Any):
        self.hash = key_hash
        self.key = key
        self.value = value


_Slot = Union[_Entry, "_BitmapNode", "_CollisionNode"]


class _CollisionNode:
    """
    Entries whose 32 bit hashes are identical.
    """

    __slots__ = ("hash", "entries")

    def __init__(self, key_hash: int, entries: Tuple[_Entry, ...]):
        self.hash = key_hash
        self.entries = entries

    def find(self, shift: int, key_hash: int, key: Any) -> Any:
        if key_hash == self.hash:
            for entry in self.entries:
                if _same_key(entry.key, key):
                    return entry.value
        raise KeyError(key)

    def assoc(self, shift: int, key_hash: int, key: Any, value: Any) -> Tuple[_Slot, bool]:
        if key_hash != self.hash:
            # nest this node one level down so both hashes can be told apart
            wrapper = _BitmapNode(_bitpos(self.hash, shift), (self,))
            return wrapper.assoc(shift, key_hash, key, value)

        for idx, entry in enumerate(self.entries):
            if _same_key(entry.key, key):
                if entry.value is value:
                    return self, False
                entries = self.entries[:idx] + (_Entry(key_hash, key, value),) + self.entries[idx + 1 :]
                return _CollisionNode(self.hash, entries), False
        return _CollisionNode(self.hash, self.entries + (_Entry(key_hash, key, value),)), True

    def without(self, shift: int, key_hash: int, key: Any) -> Optional[_Slot]:
        if key_hash == self.hash:
            for idx, entry in enumerate(self.entries):
                if _same_key(entry.key, key):
                    entries = self.entries[:idx] + self.entries[idx + 1 :]
                    if len(entries) == 0:
                        return None
                    if len(entries) == 1:
                        return entries[0]
                    return _CollisionNode(self.hash, entries)
        raise KeyError(key)

    def __iter__(self) -> Iterator[_Entry]:
        return iter(self.entries)


class _BitmapNode:
    __slots__ = ("bitmap", "slots")

    def __init__(self, bitmap: int, slots: Tuple[_Slot, ...]):
        self.bitmap = bitmap
        self.slots = slots

    def _replace(self, idx: int, slot: _Slot) -> "_BitmapNode":
        return _BitmapNode(self.bitmap, self.slots[:idx] + (slot,) + self.slots[idx + 1 :])

    def _remove(self, idx: int, bit: int) -> Optional["_BitmapNode"]:
        if self.bitmap == bit:
            return None
        return _BitmapNode(self.bitmap ^ bit, self.slots[:idx] + self.slots[idx + 1 :])

    def find(self, shift: int, key_hash: int, key: Any) -> Any:
        bit = _bitpos(key_hash, shift)
        if not self.bitmap & bit:
            raise KeyError(key)
        slot = self.slots[_index(self.bitmap, bit)]
        if isinstance(slot, _Entry):
            if _same_key(slot.key, key):
                return slot.value
            raise KeyError(key)
        return slot.find(shift + _BITS, key_hash, key)

    def assoc(self, shift: int, key_hash: int, key: Any, value: Any) -> Tuple["_BitmapNode", bool]:
        bit = _bitpos(key_hash, shift)
        idx = _index(self.bitmap, bit)

        if not self.bitmap & bit:
            slots = self.slots[:idx] + (_Entry(key_hash, key, value),) + self.slots[idx:]
            return _BitmapNode(self.bitmap | bit, slots), True

        slot = self.slots[idx]
        if isinstance(slot, _Entry):
            if _same_key(slot.key, key):
                if slot.value is value:
                    return self, False
                return self._replace(idx, _Entry(key_hash, key, value)), False
            branch = _branch(shift + _BITS, slot, _Entry(key_hash, key, value))
            return self._replace(idx, branch), True

        child, added = slot.assoc(shift + _BITS, key_hash, key, value)
        if child is slot:
            return self, False
        return self._replace(idx, child), added

    def without(self, shift: int, key_hash: int, key: Any) -> Optional["_BitmapNode"]:
        bit = _bitpos(key_hash, shift)
        if not self.bitmap & bit:
            raise KeyError(key)
        idx = _index(self.bitmap, bit)
        slot = self.slots[idx]

        if isinstance(slot, _Entry):
            if not _same_key(slot.key, key):
                raise KeyError(key)
            return self._remove(idx, bit)

        child = slot.without(shift + _BITS, key_hash, key)
        if child is None:
            return self._remove(idx, bit)
        if isinstance(child, _BitmapNode) and len(child.slots) == 1 and not isinstance(child.slots[0], _BitmapNode):
            # a single entry (or collision bucket) does not need its own level
            child = child.slots[0]
        return self._replace(idx, child)

    def __iter__(self) -> Iterator[_Entry]:
        for slot in self.slots:
            if isinstance(slot, _Entry):
                yield slot
            else:
                yield from slot


def _branch(shift: int, first: _Entry, second: _Entry) -> _Slot:
    if first.hash == second.hash:
        return _CollisionNode(first.hash, (first, second))

    first_bit = _bitpos(first.hash, shift)
    second_bit = _bitpos(second.hash, shift)
    if first_bit == second_bit:
        return _BitmapNode(first_bit, (_branch(shift + _BITS, first, second),))
    if first_bit < second_bit:
        return _BitmapNode(first_bit | second_bit, (first, second))
    return _BitmapNode(first_bit | second_bit, (second, first))


class ContextMap(Mapping):
    """
    Immutable mapping with structural sharing.

    `set` and `delete` never modify the map they are called on:

        >>> empty = ContextMap()
        >>> one = empty.set("a", 1)
        >>> len(empty), len(one)
        (0, 1)
    """

    __slots__ = ("_root", "_count")

    _root: Optional[_BitmapNode]
    _count: int

    def __new__(cls, *args, **kwargs):
        if not args and not kwargs and cls is ContextMap and _EMPTY is not None:
            return _EMPTY
        return super().__new__(cls)

    def __init__(self, initial: Optional[Mapping] = None):
        if self is _EMPTY:
            return
        root: Optional[_BitmapNode] = None
        count = 0
        if initial:
            for key, value in initial.items():
                if root is None:
                    root = _BitmapNode(0, ())
                root, added = root.assoc(0, _hash(key), key, value)
                if added:
                    count += 1
        self._root = root
        self._count = count

    @classmethod
    def _from_root(cls, root: Optional[_BitmapNode], count: int) -> "ContextMap":
        if root is None:
            return EMPTY
        new = object.__new__(cls)
        new._root = root
        new._count = count
        return new

    def set(self, key: Any, value: Any) -> "ContextMap":
        root = self._root if self._root is not None else _BitmapNode(0, ())
        new_root, added = root.assoc(0, _hash(key), key, value)
        if new_root is self._root:
            return self
        return ContextMap._from_root(new_root, self._count + 1 if added else self._count)

    def delete(self, key: Any) -> "ContextMap":
        if self._root is None:
            raise KeyError(key)
        new_root = self._root.without(0, _hash(key), key)
        return ContextMap._from_root(new_root, self._count - 1)

    def update(self, other: Mapping) -> "ContextMap":
        result = self
        for key, value in other.items():
            result = result.set(key, value)
        return result

    def __getitem__(self, key: Any) -> Any:
        if self._root is None:
            raise KeyError(key)
        return self._root.find(0, _hash(key), key)

    def __contains__(self, key: object) -> bool:
        try:
            self[key]
        except KeyError:
            return False
        return True

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[Any]:
        if self._root is not None:
            for entry in self._root:
                yield entry.key

    def items(self):
        if self._root is None:
            return iter(())
        return ((entry.key, entry.value) for entry in self._root)

    def __repr__(self) -> str:
        inner = ", ".join(f"{key!r}: {value!r}" for key, value in self.items())
        return f"ContextMap({{{inner}}})"


_EMPTY: Optional[ContextMap] = None
_EMPTY = object.__new__(ContextMap)
_EMPTY._root = None
_EMPTY._count = 0
EMPTY: ContextMap = _EMPTY
