"""Exception hierarchy shared by the resolution engine and its surfaces."""

from __future__ import annotations

from typing import Sequence


class EntityFinderError(Exception):
    """Base class for every error raised by EntityFinder."""


class ValidationError(EntityFinderError):
    """A model or input reference is malformed. Never retried."""


class MissingParameterError(ValidationError):
    """A matcher template references a ``params.*`` variable with no value."""

    def __init__(self, matcher: str, variable: str) -> None:
        super().__init__(f"'matchers.{matcher}' was given no value for '{{{{ {variable} }}}}'")
        self.matcher = matcher
        self.variable = variable


class TypeCoercionError(EntityFinderError):
    """A value does not match the declared type of its attribute."""


class BackendError(EntityFinderError):
    """The search backend failed or returned a malformed response."""


class CollectionNotFoundError(BackendError):
    """The search backend does not know the requested collection."""

    def __init__(self, collection: str) -> None:
        super().__init__(f"Collection not found: {collection}")
        self.collection = collection


class StateError(EntityFinderError):
    """An object was used in a state that does not allow the operation."""


class JobAlreadyRanError(StateError):
    """A finished job was run again without being reset."""

    def __init__(self) -> None:
        super().__init__("Job has already run. Call reset() before running it again.")


class EmptyBatchError(StateError):
    """A batch was started without any items."""

    def __init__(self) -> None:
        super().__init__("A batch must contain at least one item.")


class BatchError(EntityFinderError):
    """Combined failure of an error-suppressing batch.

    The first failure is chained as ``__cause__``; every failure, in slot
    order, is available on ``errors``.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        super().__init__(f"{len(errors)} batch item(s) failed")
        self.errors = list(errors)
        if self.errors:
            self.__cause__ = self.errors[0]
