"""Exceptions raised by the location group kernel.

Every error is a local validation failure. Only StaleVersionError is worth
retrying (re-read the group and reapply); the others point at a caller bug.
"""


class LocationGroupError(ValueError):
    """Base exception for location group errors."""

    pass


class GroupNotFoundError(LocationGroupError):
    """Raised when a group id is not part of the tree."""

    pass


class LocationNotFoundError(LocationGroupError):
    """Raised when a location is not known or not owned by the given group."""

    pass


class CycleError(LocationGroupError):
    """Raised when an attach would make a group its own ancestor."""

    pass


class DuplicateNameError(LocationGroupError):
    """Raised when a group name is already taken by another group."""

    pass


class NotEmptyError(LocationGroupError):
    """Raised when detaching or deleting a group that still has children or locations."""

    pass


class StaleVersionError(LocationGroupError):
    """Raised when the caller's observed version is older than the group's."""

    def __init__(self, group_id, expected: int, actual: int) -> None:
        super().__init__(
            f"Location group '{group_id}' was modified concurrently: "
            f"expected version {expected}, found {actual}"
        )
        self.group_id = group_id
        self.expected = expected
        self.actual = actual


class InvalidFillLevelError(LocationGroupError):
    """Raised when a max fill level lies outside [0.0, 1.0]."""

    def __init__(self, value) -> None:
        super().__init__(f"Max fill level must be between 0.0 and 1.0, got {value!r}")
        self.value = value
