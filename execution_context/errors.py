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

# The context machinery reports three kinds of failures:
#
# - invalid arguments (a local context entered from the wrong thread,
#   a key that is not a context item): reported to the caller
# - resource exhaustion while growing a map or the stack: reported to
#   the caller
# - stack corruption (pop without a matching push): an internal invariant
#   violation, never meant to be handled


class ExecutionContextError(Exception):
    pass


class InvalidContextError(ExecutionContextError, ValueError):
    """
    Raised when a local or execution context is used from a logical thread
    that does not own it, or is entered twice.
    """


class InvalidContextItemError(InvalidContextError, TypeError):
    def __init__(self, key: object):
        self.key = key
        super().__init__(f"Context keys must be ContextItem instances, got {type(key).__name__}")


class ContextAllocationError(ExecutionContextError, MemoryError):
    """
    Raised when a frame or a mapping entry can not be allocated.
    """


class StackCorruptionError(SystemError):
    """
    Raised when frames are popped out of order. This indicates a bug in the
    propagation machinery, so it does not derive from ExecutionContextError
    and generic handlers will not catch it.
    """

    def __init__(self, message: str, expected: object = None, found: object = None):
        self.expected = expected
        self.found = found
        super().__init__(message)
