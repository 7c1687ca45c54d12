import importlib
import warnings

import pytest
from fastapi import HTTPException

import src.api.routers.commitment_http_errors as http_errors_module
from src.api.routers.commitment_http_errors import (
    HTTP_422_UNPROCESSABLE,
    raise_commitment_http_exception,
)
from src.core.commitments import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    CommitmentIdempotencyConflictError,
    CommitmentNotFoundError,
    CommitmentTransitionError,
    CommitmentValidationError,
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkVersionMismatchError,
)


@pytest.mark.parametrize(
    ("exc", "expected_status"),
    [
        (CommitmentNotFoundError("missing"), 404),
        (LinkInvalidError("unknown token"), 404),
        (LinkExpiredError("expired"), 410),
        (LinkVersionMismatchError("v1 vs v2"), 409),
        (LinkAlreadyUsedError("used"), 409),
        (ChangeRequestAlreadyResolvedError("resolved"), 409),
        (CommitmentConcurrencyError("stale"), 409),
        (CommitmentIdempotencyConflictError("idem"), 409),
        (CommitmentTransitionError("transition"), HTTP_422_UNPROCESSABLE),
        (CommitmentValidationError("validation"), HTTP_422_UNPROCESSABLE),
    ],
)
def test_raise_commitment_http_exception_maps_domain_errors(
    exc: Exception, expected_status: int
) -> None:
    with pytest.raises(HTTPException) as caught:
        raise_commitment_http_exception(exc)
    assert caught.value.status_code == expected_status
    assert caught.value.detail == {"code": exc.code, "message": str(exc)}


def test_raise_commitment_http_exception_reraises_unknown_error() -> None:
    with pytest.raises(RuntimeError, match="boom"):
        raise_commitment_http_exception(RuntimeError("boom"))


def test_unprocessable_status_resolves_without_deprecation_warning() -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        reloaded = importlib.reload(http_errors_module)

    assert reloaded.HTTP_422_UNPROCESSABLE == 422
