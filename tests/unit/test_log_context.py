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

from execution_context import contextual, create_task, log_context


async def test_context_propagates_forward_to_tasks():
    context_lvl_1 = {}
    context_lvl_1_after = {}
    context_lvl_2 = {}
    context_lvl_2_after = {}
    context_lvl_3 = {}

    async def task3():
        log_context.add_context({"task3": "value", "foo": "daz"})
        context_lvl_3.update(log_context.get_context())

    async def task2():
        log_context.add_context({"task2": "value", "foo": "baz"})
        context_lvl_2.update(log_context.get_context())
        await create_task(task3())
        context_lvl_2_after.update(log_context.get_context())

    async def task1():
        log_context.add_context({"task1": "value", "foo": "bar"})
        context_lvl_1.update(log_context.get_context())
        await create_task(task2())
        context_lvl_1_after.update(log_context.get_context())

    await create_task(task1())

    assert context_lvl_1 == {
        "task1": "value",
        "foo": "bar",
    }
    assert context_lvl_1 == context_lvl_1_after

    assert context_lvl_2 == {
        "task1": "value",
        "task2": "value",
        "foo": "baz",
    }
    assert context_lvl_2 == context_lvl_2_after

    assert context_lvl_3 == {
        "task1": "value",
        "task2": "value",
        "task3": "value",
        "foo": "daz",
    }


async def test_awaited_coroutines_share_caller_context():
    @contextual
    async def handler():
        log_context.add_context({"handler": "value"})
        await asyncio.sleep(0)

    async def request():
        log_context.add_context({"request": "value"})
        await handler()
        return log_context.get_context()

    assert await create_task(request()) == {"request": "value", "handler": "value"}


async def test_clear_context():
    async def request():
        log_context.add_context({"request": "value"})
        log_context.clear_context()
        return log_context.get_context()

    assert await create_task(request()) == {}


def test_generator_context_stays_in_generator():
    @contextual
    def stream():
        log_context.add_context({"stream": "value"})
        yield log_context.get_context()

    def consume():
        log_context.add_context({"consumer": "value"})
        produced = list(stream())
        return produced, log_context.get_context()

    produced, consumer = consume()
    assert produced == [{"consumer": "value", "stream": "value"}]
    assert "stream" not in consumer
    log_context.clear_context()
