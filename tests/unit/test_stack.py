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

import pytest

from execution_context import (
    ABSENT,
    ContextAllocationError,
    InvalidContextError,
    LocalContext,
    StackCorruptionError,
    get_execution_context,
    new_context_item,
    stack,
)
from execution_context.settings import context_settings


def test_lookup_prefers_top_frame():
    item = new_context_item("x")
    assert item.get() is ABSENT

    item.set("a")
    frame = LocalContext()
    stack.push(frame)
    try:
        assert item.get() == "a"
        item.set("b")
        assert item.get() == "b"
    finally:
        stack.pop(frame)

    assert item.get() == "a"
    assert frame.get(item) == "b"


def test_push_and_pop_restore_depth():
    depth = stack.depth()
    frames = [LocalContext() for _ in range(3)]
    for frame in frames:
        stack.push(frame)
    assert stack.depth() == depth + 3
    for frame in reversed(frames):
        stack.pop(frame)
    assert stack.depth() == depth


def test_snapshot_is_not_affected_by_later_writes():
    item = new_context_item("x")
    item.set("before")

    ec = get_execution_context()
    item.set("after")
    frame = LocalContext()
    stack.push(frame)
    item.set("pushed")
    stack.pop(frame)

    assert ec.lookup(item) == "before"
    assert item.get() == "after"


def test_pop_without_push():
    with pytest.raises(StackCorruptionError):
        stack.pop(LocalContext())


def test_pop_out_of_order():
    first = LocalContext()
    second = LocalContext()
    stack.push(first)
    stack.push(second)

    with pytest.raises(StackCorruptionError) as exc_info:
        stack.pop(first)
    assert exc_info.value.expected is first
    assert exc_info.value.found is second

    stack.pop(second)
    stack.pop(first)


def test_corruption_is_not_an_execution_context_error():
    from execution_context import ExecutionContextError

    assert not issubclass(StackCorruptionError, ExecutionContextError)
    assert issubclass(StackCorruptionError, SystemError)


def test_local_context_can_not_be_entered_twice():
    frame = LocalContext()
    stack.push(frame)
    try:
        with pytest.raises(InvalidContextError):
            stack.push(frame)
    finally:
        stack.pop(frame)
    assert not frame.entered


def test_local_context_entered_by_another_thread():
    frame = LocalContext()
    entered = threading.Event()
    release = threading.Event()

    def hold():
        stack.push(frame)
        entered.set()
        release.wait(5)
        stack.pop(frame)

    thread = threading.Thread(target=hold)
    thread.start()
    try:
        assert entered.wait(5)
        with pytest.raises(InvalidContextError, match="another thread"):
            stack.push(frame)
    finally:
        release.set()
        thread.join()

    # usable again once the other thread left it
    stack.push(frame)
    stack.pop(frame)


def test_threads_have_their_own_stack():
    item = new_context_item("x")
    item.set("main")
    seen = []

    def worker():
        seen.append(item.get())
        item.set("worker")
        seen.append(item.get())

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert seen == [ABSENT, "worker"]
    assert item.get() == "main"


def test_max_depth(monkeypatch):
    monkeypatch.setattr(context_settings, "context_max_depth", stack.depth() + 2)
    first = LocalContext()
    second = LocalContext()
    stack.push(first)
    stack.push(second)
    try:
        with pytest.raises(ContextAllocationError):
            stack.push(LocalContext())
    finally:
        stack.pop(second)
        stack.pop(first)


def test_delete_in_top():
    item = new_context_item("x")
    item.set("a")
    frame = LocalContext()
    stack.push(frame)
    item.set("b")
    stack.delete_in_top(item)
    assert item.get() == "a"
    stack.pop(frame)
    assert frame.pristine


def test_execution_context_helpers():
    first = new_context_item("first")
    second = new_context_item("second")

    ec = stack.new_execution_context()
    assert ec.depth == 1
    assert ec.back is None
    assert first not in ec

    base = ec.with_top(ec.mapping.set(first, 1).set(second, 2))
    top = stack.ExecutionContext(base.mapping.delete(second).set(first, 10), base)

    assert top.depth == 2
    assert top.lookup(first) == 10
    assert top.lookup(second) == 2
    assert second in top
    assert set(top.vars()) == {first, second}
    assert len(list(top.frames())) == 2

    squashed = top.squash()
    assert squashed.depth == 1
    assert squashed.lookup(first) == 10
    assert squashed.lookup(second) == 2
    assert repr(squashed) == "<ExecutionContext depth=1>"
