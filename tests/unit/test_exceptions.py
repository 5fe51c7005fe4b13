"""Tests for the exception hierarchy."""

import pytest

from convertkit.exceptions import (
    BackendError,
    ConversionError,
    ConversionTimeoutError,
    ErrorKind,
    InitializationError,
    ValidationError,
    WorkerTerminatedError,
)


class TestConversionErrors:
    """Tests for ConversionError subclasses."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (InitializationError("no worker"), ErrorKind.INITIALIZATION),
            (WorkerTerminatedError("image"), ErrorKind.INITIALIZATION),
            (ConversionTimeoutError("Image conversion", 30), ErrorKind.TIMEOUT),
            (BackendError("bad file"), ErrorKind.BACKEND),
            (ValidationError("too big"), ErrorKind.VALIDATION),
        ],
    )
    def test_kinds(self, error, kind):
        assert isinstance(error, ConversionError)
        assert error.kind is kind
        assert error.to_dict() == {"kind": kind.value, "message": error.message}

    def test_timeout_message(self):
        error = ConversionTimeoutError("Document conversion", 2.5)
        assert error.message == "Document conversion did not finish within 2.5s"
        assert str(error) == error.message

    def test_terminated_message(self):
        error = WorkerTerminatedError("minify")
        assert error.message == "The minify worker was shut down before replying"
        assert error.worker_kind == "minify"

    def test_cause_kept(self):
        cause = OSError("disk")
        error = BackendError("Failed to convert a.png", cause=cause)
        assert error.cause is cause
