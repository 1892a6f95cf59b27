"""Validation errors raised synchronously to callers and never persisted."""


class VigilValidationError(Exception):
    """Base class for request errors a holder or admin can fix."""

    status_code = 400


class SlotNotFoundError(VigilValidationError):
    status_code = 404


class SlotAlreadyHeldError(VigilValidationError):
    """The slot has another live holder."""

    status_code = 409


class HolderAlreadyAssignedError(VigilValidationError):
    """The holder already holds a different slot."""

    status_code = 409


class NotAssignedError(VigilValidationError):
    """The holder has no live assignment."""

    status_code = 404


class InvalidPauseWindowError(VigilValidationError):
    status_code = 422


class OverlappingPauseError(VigilValidationError):
    status_code = 409


class InvalidTransitionError(VigilValidationError):
    """An assignment event that its current state does not accept."""

    status_code = 409
