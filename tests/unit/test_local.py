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

from unittest.mock import patch

import pytest

from execution_context import (
    ABSENT,
    ContextAllocationError,
    InvalidContextError,
    InvalidContextItemError,
    LocalContext,
    new_context_item,
    new_local_context,
)
from execution_context.hamt import EMPTY, ContextMap


def test_empty_local_context():
    lc = new_local_context()
    item = new_context_item("foo")

    assert len(lc) == 0
    assert lc.pristine
    assert lc.mapping is EMPTY
    assert lc.get(item) is ABSENT
    assert lc.get(item, 1) == 1
    assert LocalContext.empty().pristine


def test_with_set_leaves_original_untouched():
    item = new_context_item("foo")
    lc = LocalContext()

    updated = lc.with_set(item, "bar")

    assert lc.get(item) is ABSENT
    assert updated.get(item) == "bar"
    assert item in updated
    assert list(updated) == [item]
    assert list(updated.items()) == [(item, "bar")]
    assert not updated.pristine


def test_with_delete():
    item = new_context_item("foo")
    other = new_context_item("other")
    lc = LocalContext().with_set(item, "bar")

    assert lc.with_delete(other) is lc
    assert lc.with_delete(item).get(item) is ABSENT
    assert lc.get(item) == "bar"


def test_keys_must_be_context_items():
    lc = LocalContext()
    with pytest.raises(InvalidContextItemError) as exc_info:
        lc.get("foo")  # type: ignore
    assert isinstance(exc_info.value, TypeError)
    assert isinstance(exc_info.value, InvalidContextError)

    with pytest.raises(InvalidContextItemError):
        lc.with_set(None, 1)  # type: ignore


def test_allocation_failure_is_reported():
    item = new_context_item("foo")
    with patch.object(ContextMap, "set", side_effect=MemoryError):
        with pytest.raises(ContextAllocationError) as exc_info:
            LocalContext().with_set(item, "bar")
    assert isinstance(exc_info.value, MemoryError)


def test_repr():
    assert repr(LocalContext()) == "<LocalContext 0 items, idle>"
