from typing import NoReturn

from fastapi import HTTPException, status

from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    CommitmentIdempotencyConflictError,
    CommitmentLifecycleError,
    CommitmentNotFoundError,
    CommitmentTransitionError,
    CommitmentValidationError,
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkVersionMismatchError,
)

# Current Starlette deprecates the *_ENTITY alias; older releases lack *_CONTENT.
HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)

_STATUS_BY_ERROR: tuple[tuple[type[CommitmentLifecycleError], int], ...] = (
    (CommitmentNotFoundError, status.HTTP_404_NOT_FOUND),
    (LinkInvalidError, status.HTTP_404_NOT_FOUND),
    (LinkExpiredError, status.HTTP_410_GONE),
    (LinkVersionMismatchError, status.HTTP_409_CONFLICT),
    (LinkAlreadyUsedError, status.HTTP_409_CONFLICT),
    (ChangeRequestAlreadyResolvedError, status.HTTP_409_CONFLICT),
    (CommitmentConcurrencyError, status.HTTP_409_CONFLICT),
    (CommitmentIdempotencyConflictError, status.HTTP_409_CONFLICT),
    (CommitmentTransitionError, HTTP_422_UNPROCESSABLE),
    (CommitmentValidationError, HTTP_422_UNPROCESSABLE),
)


def raise_commitment_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, CommitmentLifecycleError):
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                raise HTTPException(
                    status_code=status_code,
                    detail={"code": exc.code, "message": str(exc)},
                ) from exc
    raise exc
