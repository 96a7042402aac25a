"""Tests for error formatting."""

import pytest
from pydantic import BaseModel

from faultline.classification import ErrorKind
from faultline.errors import FieldValidationError, StorageError
from faultline.formatting import (
    ErrorMessages,
    ErrorResponse,
    flatten_field_errors,
    format_error,
    handle_error,
    wrap_api_error,
)


class Address(BaseModel):
    postcode: str


class Contact(BaseModel):
    email: str
    address: Address


class TestStorageFormatting:
    """Tests for storage code translation."""

    @pytest.mark.parametrize(
        "code,expected_code",
        [
            ("PGRST116", "NOT_FOUND"),
            ("PGRST301", "PERMISSION_DENIED"),
            ("23505", "DUPLICATE_ENTRY"),
            ("23503", "FOREIGN_KEY_VIOLATION"),
            ("42P01", "TABLE_NOT_FOUND"),
        ],
    )
    def test_known_codes(self, code, expected_code):
        api_error = format_error(StorageError("raw db text", code=code), ErrorKind.STORAGE)
        assert api_error.code == expected_code
        assert "raw db text" not in api_error.message

    def test_duplicate_message(self):
        api_error = format_error(StorageError("dup key", code="23505"), ErrorKind.STORAGE)
        assert "already exists" in api_error.message

    def test_unmatched_code_passes_through(self):
        api_error = format_error({"code": "XX999", "message": "weird failure"}, ErrorKind.STORAGE)
        assert api_error.code == "XX999"
        assert api_error.message == "weird failure"

    def test_defaults_without_code_or_message(self):
        api_error = format_error(object(), ErrorKind.STORAGE)
        assert api_error.code == "DATABASE_ERROR"
        assert api_error.message == ErrorMessages.STORAGE


class TestValidationFormatting:
    """Tests for field-path flattening."""

    def test_field_validation_error(self):
        raw = FieldValidationError(
            [
                (("address", "postcode"), "Required"),
                (("items", 0, "qty"), "Must be positive"),
            ]
        )
        api_error = format_error(raw, ErrorKind.VALIDATION)

        assert api_error.code == "VALIDATION_ERROR"
        assert api_error.field == "address.postcode"
        assert api_error.details == {"address.postcode": "Required", "items.0.qty": "Must be positive"}

    def test_pydantic_error(self):
        with pytest.raises(Exception) as exc_info:
            Contact(email="a@b.test", address={})
        api_error = format_error(exc_info.value, ErrorKind.VALIDATION)

        assert api_error.field == "address.postcode"
        assert "address.postcode" in api_error.details

    def test_repeated_path_last_wins(self):
        raw = FieldValidationError([(("name",), "Too short"), (("name",), "Invalid characters")])
        assert flatten_field_errors(raw) == {"name": "Invalid characters"}

    def test_empty_path_is_form_level(self):
        raw = FieldValidationError([((), "Passwords do not match")])
        assert flatten_field_errors(raw) == {"_form": "Passwords do not match"}


class TestFixedMessages:
    """Tests that internal text never leaks."""

    @pytest.mark.parametrize(
        "kind",
        [ErrorKind.SERVER, ErrorKind.UNKNOWN, ErrorKind.NETWORK, ErrorKind.AUTH, ErrorKind.PERMISSION],
    )
    def test_no_raw_text(self, kind):
        raw = RuntimeError("psycopg: connection to 10.0.0.12 failed; SELECT * FROM secrets")
        api_error = format_error(raw, kind)

        assert "10.0.0.12" not in api_error.message
        assert api_error.code == kind.code
        assert api_error.details is None


class TestHandleError:
    """Tests for handle_error and wrap_api_error."""

    def test_counts_errors_by_kind(self, metrics):
        handle_error(ConnectionError("down"), context="projects.list", metrics=metrics)
        handle_error(ConnectionError("down"), context="projects.list", metrics=metrics)
        handle_error(ValueError("bad"), metrics=metrics)

        values = metrics.snapshot().values()
        assert values['errors_total{kind="network"}'] == 2
        assert values['errors_total{kind="unknown"}'] == 1

    def test_returns_formatted_error(self):
        api_error = handle_error({"status": 401})
        assert api_error.code == "AUTH_ERROR"
        assert api_error.message == ErrorMessages.AUTH

    def test_wrap_api_error(self):
        response = wrap_api_error(RuntimeError("stack trace here"))
        assert isinstance(response, ErrorResponse)
        assert response.error is True
        assert response.code == "UNKNOWN_ERROR"
        assert "stack trace" not in response.message
