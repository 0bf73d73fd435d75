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

from execution_context.const import ABSENT
from execution_context.errors import (
    ContextAllocationError,
    ExecutionContextError,
    InvalidContextError,
    InvalidContextItemError,
    StackCorruptionError,
)
from execution_context.local import LocalContext
from execution_context.propagation import (
    ContextAsyncGenerator,
    ContextCoroutine,
    ContextGenerator,
    FrameState,
    contextual,
)
from execution_context.registry import (
    ContextItem,
    ContextItemRegistry,
    new_context_item,
)
from execution_context.runners import (
    get_execution_context,
    new_execution_context,
    new_local_context,
    run_in_frame,
    run_with_execution_context,
    run_with_local_context,
)
from execution_context.stack import ExecutionContext
from execution_context.tasks import ContextTask, create_task, install, task_factory
from execution_context.threads import ContextThread, bind

__all__ = (
    "ABSENT",
    "ContextAllocationError",
    "ContextAsyncGenerator",
    "ContextCoroutine",
    "ContextGenerator",
    "ContextItem",
    "ContextItemRegistry",
    "ContextTask",
    "ContextThread",
    "ExecutionContext",
    "ExecutionContextError",
    "FrameState",
    "InvalidContextError",
    "InvalidContextItemError",
    "LocalContext",
    "StackCorruptionError",
    "bind",
    "contextual",
    "create_task",
    "get_execution_context",
    "install",
    "new_context_item",
    "new_execution_context",
    "new_local_context",
    "run_in_frame",
    "run_with_execution_context",
    "run_with_local_context",
    "task_factory",
)
