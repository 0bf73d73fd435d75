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

from typing import Any, Callable, TypeVar, Union

from execution_context import metrics, stack
from execution_context.errors import ContextAllocationError, InvalidContextError
from execution_context.local import LocalContext
from execution_context.settings import context_settings
from execution_context.stack import ExecutionContext

T = TypeVar("T")

run_observer = metrics.Observer(
    "execution_context_run",
    labels={"mode": "execution_context"},
    error_mappings={
        "invalid_context": InvalidContextError,
        "allocation": ContextAllocationError,
    },
)


class NoopRecorder:
    def __enter__(self):
        return self

    def __exit__(self, *args): ...


def _observe(mode: str) -> Union[metrics.ObserverRecorder, NoopRecorder]:
    if context_settings.context_metrics_enabled:
        return run_observer(labels={"mode": mode})
    return NoopRecorder()


def get_execution_context() -> ExecutionContext:
    """
    Capture the current execution context. Constant time, and the returned
    value is not affected by later writes.
    """
    return stack.snapshot()


def new_execution_context() -> ExecutionContext:
    return stack.new_execution_context()


def new_local_context() -> LocalContext:
    return LocalContext()


def run_in_frame(
    ec: ExecutionContext, lc: LocalContext, fn: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """
    Run `fn` with `lc` pushed on top of `ec`, then store the values written
    by `fn` back into `lc` and restore the previous stack.
    """
    if not isinstance(ec, ExecutionContext):
        raise InvalidContextError(f"Expected an ExecutionContext, got {type(ec).__name__}")
    if not isinstance(lc, LocalContext):
        raise InvalidContextError(f"Expected a LocalContext, got {type(lc).__name__}")

    stack.push(lc, base=ec)
    try:
        return fn(*args, **kwargs)
    finally:
        stack.pop(lc)


def run_with_execution_context(ec: ExecutionContext, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run `fn` on top of `ec` inside a throwaway frame. Nothing `fn` writes
    survives the call, so running twice with the same `ec` starts from the
    same values both times.
    """
    with _observe("execution_context"):
        return run_in_frame(ec, LocalContext(), fn, *args, **kwargs)


def run_with_local_context(lc: LocalContext, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run `fn` with `lc` pushed on the current stack. Values written by `fn`
    are kept in `lc` and seen by the next run with the same local context.
    """
    with _observe("local_context"):
        return run_in_frame(stack.current(), lc, fn, *args, **kwargs)
