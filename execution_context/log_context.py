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

# ABOUT
# Context data attached to every structured log record.
#
# Values are stored in a context item, so they follow the execution
# context: what a caller adds is seen by the code it calls and by the tasks
# and threads it starts, while what a generator or a task adds stays there.
#
from typing import Dict

from execution_context.registry import new_context_item

context_data = new_context_item("log_context")


def add_context(new_data: Dict[str, str]):
    """
    This implementation always merges and sets the context, even if is was already set.

    This is so data is propagated forward but not backward.
    """
    data = context_data.get(None)
    if data is None:
        data = {}
    else:
        data = data.copy()

    data.update(new_data)
    context_data.set(data)  # always set the context


def clear_context():
    context_data.set({})


def get_context() -> Dict[str, str]:
    return context_data.get(None) or {}
