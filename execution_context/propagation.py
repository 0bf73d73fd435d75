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

# Moves frames on and off the execution context stack at suspension points.
#
# Every suspendable unit owns a local context. While the unit runs, its local
# context is the top frame; when it suspends, finishes or fails, the frame is
# popped and whatever the unit wrote is kept in its own local context.
#
# Generators and async generators are always bound to their own frame, so a
# producer never leaks values into its consumer and two producers driven in
# turns never see each other's values.
#
# Coroutines joined with `await` behave like function calls instead: if
# nothing was put in their local context before they started, they drop it
# and write straight into their caller's frame.
import collections.abc
import enum
import logging
from functools import wraps
from inspect import isasyncgenfunction, iscoroutinefunction, isgeneratorfunction
from typing import Any, Callable, Generator, Optional

from execution_context import stack
from execution_context.errors import InvalidContextError
from execution_context.local import LocalContext

logger = logging.getLogger(__name__)


class FrameState(enum.Enum):
    UNBOUND = "unbound"
    BOUND = "bound"


def throw_into(target: Any, typ: Any, val: Any = None, tb: Any = None) -> Any:
    if val is None and tb is None:
        return target.throw(typ)
    return target.throw(typ, val, tb)


def drive(stepper: Any) -> Generator[Any, Any, Any]:
    """
    Generator based `__await__` implementation forwarding every resumption
    to `stepper.send`/`stepper.throw` and closing it if abandoned.
    """
    value = None
    error: Optional[BaseException] = None
    while True:
        try:
            if error is None:
                yielded = stepper.send(value)
            else:
                yielded = stepper.throw(error)
        except StopIteration as exc:
            return exc.value
        error = None
        try:
            value = yield yielded
        except GeneratorExit:
            stepper.close()
            raise
        except BaseException as exc:
            value = None
            error = exc


class Resumption:
    """
    Pushes the unit's local context for the duration of one resumption, and
    pops it on the way out whatever happened in between.
    """

    def __init__(self, unit: "SuspendableUnit"):
        self.unit = unit
        self.local_context: Optional[LocalContext] = None

    def __enter__(self) -> "Resumption":
        if self.unit.state is FrameState.BOUND:
            local_context = self.unit.local_context
            stack.push(local_context)
            self.local_context = local_context
        return self

    def __exit__(self, *args) -> None:
        if self.local_context is not None:
            stack.pop(self.local_context)
            self.local_context = None


class SuspendableUnit:
    def __init__(self, local_context: Optional[LocalContext] = None):
        if local_context is not None and not isinstance(local_context, LocalContext):
            raise InvalidContextError(f"Expected a LocalContext, got {type(local_context).__name__}")
        self._local_context = local_context if local_context is not None else LocalContext()
        self._rebound = local_context is not None
        self.state = FrameState.BOUND

    @property
    def local_context(self) -> LocalContext:
        return self._local_context

    @local_context.setter
    def local_context(self, local_context: LocalContext) -> None:
        if not isinstance(local_context, LocalContext):
            raise InvalidContextError(f"Expected a LocalContext, got {type(local_context).__name__}")
        if self._local_context.entered:
            raise InvalidContextError("Can not rebind the local context of a running unit")
        self._local_context = local_context
        self._rebound = True
        self.state = FrameState.BOUND

    @property
    def rebound(self) -> bool:
        return self._rebound

    def resumption(self) -> Resumption:
        return Resumption(self)


class ContextGenerator(SuspendableUnit, collections.abc.Generator):
    """
    Generator running every step inside its own frame.
    """

    def __init__(self, generator: Generator, local_context: Optional[LocalContext] = None):
        super().__init__(local_context)
        self._generator = generator

    def send(self, value: Any) -> Any:
        with self.resumption():
            return self._generator.send(value)

    def throw(self, typ: Any, val: Any = None, tb: Any = None) -> Any:
        with self.resumption():
            return throw_into(self._generator, typ, val, tb)

    def close(self) -> None:
        with self.resumption():
            self._generator.close()

    def __repr__(self) -> str:
        return f"<ContextGenerator {self._generator!r} {self.state.value}>"


class ContextCoroutine(SuspendableUnit, collections.abc.Coroutine):
    """
    Coroutine with call semantics when awaited and its own frame when driven
    directly, for instance as the root coroutine of a task.
    """

    def __init__(self, coroutine: Any, local_context: Optional[LocalContext] = None):
        super().__init__(local_context)
        self._coroutine = coroutine
        self._started = False
        self._call_chained = False

    @property
    def call_chained(self) -> bool:
        return self._call_chained

    def _resume(self) -> Resumption:
        if not self._started:
            self._started = True
            if self._call_chained and self._local_context.pristine and not self._rebound:
                self.state = FrameState.UNBOUND
                logger.debug(f"{self!r} shares its caller frame")
        return self.resumption()

    def send(self, value: Any) -> Any:
        with self._resume():
            return self._coroutine.send(value)

    def throw(self, typ: Any, val: Any = None, tb: Any = None) -> Any:
        with self._resume():
            return throw_into(self._coroutine, typ, val, tb)

    def close(self) -> None:
        with self.resumption():
            self._coroutine.close()

    def __await__(self):
        self._call_chained = True
        return drive(self)

    def __repr__(self) -> str:
        return f"<ContextCoroutine {self._coroutine!r} {self.state.value}>"


class _GuardedStepper:
    def __init__(self, unit: SuspendableUnit, iterator: Any):
        self.unit = unit
        self.iterator = iterator

    def send(self, value: Any) -> Any:
        with self.unit.resumption():
            return self.iterator.send(value)

    def throw(self, error: BaseException) -> Any:
        with self.unit.resumption():
            return self.iterator.throw(error)

    def close(self) -> None:
        with self.unit.resumption():
            self.iterator.close()


class _GuardedAwaitable:
    def __init__(self, unit: SuspendableUnit, awaitable: Any):
        self.unit = unit
        self.awaitable = awaitable

    def __await__(self):
        return drive(_GuardedStepper(self.unit, self.awaitable.__await__()))


class ContextAsyncGenerator(SuspendableUnit, collections.abc.AsyncGenerator):
    """
    Async generator running every step, including the awaits inside a step,
    inside its own frame.
    """

    def __init__(self, agen: Any, local_context: Optional[LocalContext] = None):
        super().__init__(local_context)
        self._agen = agen

    def asend(self, value: Any) -> _GuardedAwaitable:
        return _GuardedAwaitable(self, self._agen.asend(value))

    def athrow(self, typ: Any, val: Any = None, tb: Any = None) -> _GuardedAwaitable:
        return _GuardedAwaitable(self, throw_into(_AsyncThrower(self._agen), typ, val, tb))

    def aclose(self) -> _GuardedAwaitable:
        return _GuardedAwaitable(self, self._agen.aclose())

    def __repr__(self) -> str:
        return f"<ContextAsyncGenerator {self._agen!r} {self.state.value}>"


class _AsyncThrower:
    # adapts athrow to the throw() signature handled by throw_into
    def __init__(self, agen: Any):
        self.agen = agen

    def throw(self, *args: Any) -> Any:
        return self.agen.athrow(*args)


def contextual(func: Callable) -> Callable:
    """
    Decorate a generator, async generator or coroutine function so that the
    objects it creates run with their own frame:

        @contextual
        def numbers():
            precision.set(2)
            yield ...
    """
    if iscoroutinefunction(func):

        @wraps(func)
        def inner(*args, **kwargs):
            return ContextCoroutine(func(*args, **kwargs))

    elif isasyncgenfunction(func):

        @wraps(func)
        def inner(*args, **kwargs):
            return ContextAsyncGenerator(func(*args, **kwargs))

    elif isgeneratorfunction(func):

        @wraps(func)
        def inner(*args, **kwargs):
            return ContextGenerator(func(*args, **kwargs))

    else:
        raise TypeError(f"{func!r} is not a generator, async generator or coroutine function")

    return inner
