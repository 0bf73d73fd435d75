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

import asyncio
from unittest.mock import MagicMock, patch

from execution_context import (
    ABSENT,
    ContextCoroutine,
    ContextTask,
    contextual,
    create_task,
    install,
    new_context_item,
    runners,
    stack,
)
from execution_context.settings import context_settings


async def test_task_starts_from_creation_snapshot():
    item = new_context_item("item")

    async def child():
        return item.get()

    async def parent():
        item.set("created")
        task = create_task(child())
        item.set("changed after creation")
        return await task

    assert await create_task(parent()) == "created"


async def test_task_writes_are_not_visible_to_creator():
    item = new_context_item("item")

    async def child():
        item.set("child")
        await asyncio.sleep(0)
        return item.get()

    async def parent():
        item.set("parent")
        child_value = await create_task(child())
        return child_value, item.get()

    assert await create_task(parent()) == ("child", "parent")


async def test_concurrent_tasks_do_not_leak():
    item = new_context_item("item")

    async def worker(value):
        item.set(value)
        seen = []
        for _ in range(5):
            await asyncio.sleep(0)
            seen.append(item.get())
        return seen

    results = await asyncio.gather(*[create_task(worker(i)) for i in range(5)])
    assert results == [[i] * 5 for i in range(5)]
    assert item.get() is ABSENT


async def test_task_ticks_discard_writes_outside_own_frame():
    item = new_context_item("item")

    async def body():
        item.set("written")
        first = item.get()
        await asyncio.sleep(0)
        return first, item.get()

    runner = ContextTask(body())
    assert runner.local_context is None
    result = await asyncio.get_running_loop().create_task(runner)
    assert result == ("written", ABSENT)


async def test_task_ticks_persist_writes_when_requested():
    item = new_context_item("item")

    async def body():
        item.set("written")
        await asyncio.sleep(0)
        return item.get()

    runner = ContextTask(body(), persist_mutations=True)
    result = await asyncio.get_running_loop().create_task(runner)

    assert result == "written"
    assert runner.local_context.get(item) == "written"


async def test_create_task_with_persisted_mutations():
    item = new_context_item("item")

    async def body():
        item.set("written")
        await asyncio.sleep(0)
        return item.get()

    assert await create_task(body(), persist_mutations=True, name="persisted") == "written"


async def test_create_task_keeps_context_coroutines():
    item = new_context_item("item")

    async def body():
        item.set("own frame")
        await asyncio.sleep(0)
        return item.get()

    coro = ContextCoroutine(body())
    task = create_task(coro, name="named")

    assert task.get_name() == "named"
    assert await task == "own frame"
    assert coro.local_context.get(item) == "own frame"


async def test_awaiting_a_context_task_directly():
    item = new_context_item("item")
    item.set("outer")
    depth = stack.depth()

    async def body():
        await asyncio.sleep(0)
        return item.get()

    runner = ContextTask(ContextCoroutine(body()))
    item.set("after capture")

    assert await runner == "outer"
    assert stack.depth() == depth
    assert runner.execution_context.lookup(item) == "outer"


async def test_completed_task_is_not_observed_as_a_run(monkeypatch):
    monkeypatch.setattr(context_settings, "context_metrics_enabled", True)
    observer = MagicMock()

    async def body():
        await asyncio.sleep(0)
        return 1

    with patch.object(runners, "run_observer", observer):
        assert await asyncio.get_running_loop().create_task(ContextTask(body())) == 1
        assert await create_task(body(), persist_mutations=True) == 1

    observer.assert_not_called()


async def test_installed_factory_isolates_plain_asyncio_tasks():
    item = new_context_item("item")
    written = asyncio.Event()

    @contextual
    async def handler(value):
        item.set(value)

    async def request_a():
        await handler("a")
        written.set()
        await asyncio.sleep(0)
        return item.get()

    async def request_b():
        await written.wait()
        return item.get()

    loop = asyncio.get_running_loop()
    install(loop)
    try:
        task_b = asyncio.create_task(request_b())
        task_a = asyncio.create_task(request_a())
        assert await task_a == "a"
        assert await task_b is ABSENT
        assert isinstance(task_a.get_coro(), ContextTask)
    finally:
        loop.set_task_factory(None)

    assert item.get() is ABSENT


async def test_installed_factory_covers_gather():
    item = new_context_item("item")

    async def worker(value):
        item.set(value)
        await asyncio.sleep(0)
        return item.get()

    loop = asyncio.get_running_loop()
    install()
    try:
        results = await asyncio.gather(*[worker(i) for i in range(3)])
        task = asyncio.create_task(worker("named"), name="named")
        assert task.get_name() == "named"
        assert await task == "named"
    finally:
        loop.set_task_factory(None)

    assert results == [0, 1, 2]
    assert item.get() is ABSENT
