class CommitmentLifecycleError(Exception):
    code = "COMMITMENT_LIFECYCLE_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message
        super().__init__(f"{self.code}: {message}" if message else self.code)


class CommitmentValidationError(CommitmentLifecycleError):
    code = "VALIDATION_ERROR"


class CommitmentTransitionError(CommitmentLifecycleError):
    code = "INVALID_STATE_TRANSITION"


class CommitmentNotFoundError(CommitmentLifecycleError):
    code = "NOT_FOUND"


class CommitmentConcurrencyError(CommitmentLifecycleError):
    code = "CONCURRENT_MODIFICATION"


class CommitmentIdempotencyConflictError(CommitmentLifecycleError):
    code = "IDEMPOTENCY_KEY_CONFLICT"


class ChangeRequestAlreadyResolvedError(CommitmentLifecycleError):
    code = "CHANGE_REQUEST_ALREADY_RESOLVED"


class LinkInvalidError(CommitmentLifecycleError):
    code = "LINK_INVALID"


class LinkExpiredError(CommitmentLifecycleError):
    code = "LINK_EXPIRED"


class LinkVersionMismatchError(CommitmentLifecycleError):
    code = "LINK_OUTDATED"


class LinkAlreadyUsedError(CommitmentLifecycleError):
    code = "LINK_ALREADY_USED"
