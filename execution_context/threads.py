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
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from execution_context.runners import get_execution_context, run_with_execution_context
from execution_context.stack import ExecutionContext

T = TypeVar("T")


class ContextThread(threading.Thread):
    """
    Thread whose target runs on top of the execution context of the code
    that created it.
    """

    def __init__(self, *args: Any, execution_context: Optional[ExecutionContext] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.execution_context = (
            execution_context if execution_context is not None else get_execution_context()
        )

    def run(self) -> None:
        run_with_execution_context(self.execution_context, super().run)


def bind(fn: Callable[..., T]) -> Callable[..., T]:
    """
    Capture the current execution context and return a callable running
    `fn` on top of it, wherever and whenever it is called. Useful for
    executor jobs and loop callbacks.
    """
    ec = get_execution_context()

    @wraps(fn)
    def inner(*args: Any, **kwargs: Any) -> T:
        return run_with_execution_context(ec, fn, *args, **kwargs)

    return inner
