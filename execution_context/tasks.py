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

# Each task is its own logical thread: it starts from the execution context
# captured when it was created and never writes into its creator's frames.
import asyncio
import collections.abc
import logging
from typing import Any, Optional

from execution_context.local import LocalContext
from execution_context.propagation import ContextCoroutine, drive, throw_into
from execution_context.runners import get_execution_context, run_in_frame
from execution_context.stack import ExecutionContext

logger = logging.getLogger(__name__)


class ContextTask(collections.abc.Coroutine):
    """
    Coroutine adapter that asyncio can schedule. Every step of the wrapped
    coroutine runs on top of the captured execution context.

    By default each step gets a throwaway frame, so what the wrapped
    coroutine writes outside of its own frame is forgotten between steps.
    With `persist_mutations=True` a dedicated local context is carried from
    one step to the next instead.
    """

    def __init__(
        self,
        coroutine: Any,
        *,
        persist_mutations: bool = False,
        execution_context: Optional[ExecutionContext] = None,
    ):
        self._coroutine = coroutine
        self._execution_context = (
            execution_context if execution_context is not None else get_execution_context()
        )
        self._local_context: Optional[LocalContext] = LocalContext() if persist_mutations else None

    @property
    def execution_context(self) -> ExecutionContext:
        return self._execution_context

    @property
    def local_context(self) -> Optional[LocalContext]:
        return self._local_context

    def _tick(self, step, *args):
        # not observed as a run: the last step ends with StopIteration
        local_context = self._local_context if self._local_context is not None else LocalContext()
        return run_in_frame(self._execution_context, local_context, step, *args)

    def send(self, value: Any) -> Any:
        return self._tick(self._coroutine.send, value)

    def throw(self, typ: Any, val: Any = None, tb: Any = None) -> Any:
        return self._tick(throw_into, self._coroutine, typ, val, tb)

    def close(self) -> None:
        self._tick(self._coroutine.close)

    def __await__(self):
        return drive(self)

    def __repr__(self) -> str:
        return f"<ContextTask {self._coroutine!r}>"


def create_task(
    coroutine: Any,
    *,
    name: Optional[str] = None,
    persist_mutations: bool = False,
) -> asyncio.Task:
    """
    Schedule `coroutine` on the running loop as a new logical thread.

    Without `persist_mutations` the coroutine is given its own frame, so the
    values it writes survive across its awaits and stay invisible to the
    creator. With `persist_mutations` it runs as is on a dedicated local
    context kept by the task.
    """
    if not persist_mutations and not isinstance(coroutine, ContextCoroutine):
        coroutine = ContextCoroutine(coroutine)
    loop = asyncio.get_running_loop()
    return loop.create_task(ContextTask(coroutine, persist_mutations=persist_mutations), name=name)


def task_factory(loop: asyncio.AbstractEventLoop, coroutine: Any, **kwargs: Any) -> asyncio.Task:
    """
    Event loop task factory giving every scheduled coroutine its own logical
    thread, as `create_task` does.
    """
    if not isinstance(coroutine, ContextTask):
        if not isinstance(coroutine, ContextCoroutine):
            coroutine = ContextCoroutine(coroutine)
        coroutine = ContextTask(coroutine)
    return asyncio.Task(coroutine, loop=loop, **kwargs)


def install(loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """
    Make `asyncio.create_task`, `gather` and `ensure_future` on `loop` (the
    running loop by default) start tasks the way `create_task` does.

    Tasks created before the call, including the one running `install`, are
    not affected.
    """
    if loop is None:
        loop = asyncio.get_running_loop()
    loop.set_task_factory(task_factory)
    logger.debug(f"Installed context task factory on {loop!r}")
