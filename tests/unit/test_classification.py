"""Tests for error classification."""

import asyncio

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import BaseModel

from faultline.classification import ErrorClassifier, ErrorKind, classify, extract_code, extract_status
from faultline.errors import FieldValidationError, StorageError


class Project(BaseModel):
    name: str
    budget: int


def _pydantic_error():
    try:
        Project(name=1, budget="lots")
    except Exception as e:
        return e
    raise AssertionError("expected a validation error")


class HttpishError(Exception):
    def __init__(self, status, code=None):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.code = code


class TestErrorKind:
    """Tests for ErrorKind metadata."""

    def test_codes(self):
        assert ErrorKind.VALIDATION.code == "VALIDATION_ERROR"
        assert ErrorKind.STORAGE.code == "DATABASE_ERROR"
        assert ErrorKind.UNKNOWN.code == "UNKNOWN_ERROR"

    def test_only_network_and_server_are_transient(self):
        transient = {kind for kind in ErrorKind if kind.transient}
        assert transient == {ErrorKind.NETWORK, ErrorKind.SERVER}


class TestClassify:
    """Tests for the classification order."""

    def test_pydantic_validation(self):
        assert classify(_pydantic_error()) == ErrorKind.VALIDATION

    def test_field_validation(self):
        assert classify(FieldValidationError([(("email",), "Invalid email")])) == ErrorKind.VALIDATION

    @pytest.mark.parametrize("code", ["PGRST116", "PGRST301", "23505", "23503", "42P01"])
    def test_storage_codes(self, code):
        assert classify(StorageError("db said no", code=code)) == ErrorKind.STORAGE

    def test_storage_code_wins_over_status(self):
        """A storage error carrying a 403 is still a storage error."""
        assert classify(StorageError("denied", code="PGRST301", status=403)) == ErrorKind.STORAGE

    def test_auth_by_status_and_code(self):
        assert classify(HttpishError(401)) == ErrorKind.AUTH
        assert classify({"code": "auth_error", "message": "expired"}) == ErrorKind.AUTH

    def test_permission(self):
        assert classify(HttpishError(403)) == ErrorKind.PERMISSION

    @pytest.mark.parametrize("status", [500, 502, 503, 599])
    def test_server(self, status):
        assert classify(HttpishError(status)) == ErrorKind.SERVER

    def test_client_status_is_unknown(self):
        assert classify(HttpishError(404)) == ErrorKind.UNKNOWN

    def test_network_code_and_exceptions(self):
        assert classify({"code": "NETWORK_ERROR"}) == ErrorKind.NETWORK
        assert classify(ConnectionResetError("reset")) == ErrorKind.NETWORK
        assert classify(TimeoutError()) == ErrorKind.NETWORK
        assert classify(asyncio.TimeoutError()) == ErrorKind.NETWORK
        assert classify(httpx.ConnectError("refused")) == ErrorKind.NETWORK

    def test_httpx_status_error_reads_response(self):
        request = httpx.Request("GET", "https://api.example.test/projects")
        response = httpx.Response(503, request=request)
        error = httpx.HTTPStatusError("unavailable", request=request, response=response)
        assert extract_status(error) == 503
        assert classify(error) == ErrorKind.SERVER

    def test_plain_exception_is_unknown(self):
        assert classify(ValueError("boom")) == ErrorKind.UNKNOWN

    def test_offline_check(self):
        classifier = ErrorClassifier(connectivity=lambda: False)
        assert classifier.classify(ValueError("fetch failed")) == ErrorKind.NETWORK

    def test_offline_check_does_not_override_earlier_rules(self):
        classifier = ErrorClassifier(connectivity=lambda: False)
        assert classifier.classify(HttpishError(401)) == ErrorKind.AUTH

    def test_raising_check_means_online(self):
        def check():
            raise RuntimeError("no navigator")

        assert ErrorClassifier(connectivity=check).classify(ValueError("x")) == ErrorKind.UNKNOWN

    def test_hostile_attribute_access_is_unknown(self):
        class Hostile:
            @property
            def code(self):
                raise RuntimeError("nope")

        assert classify(Hostile()) == ErrorKind.UNKNOWN

    def test_bool_status_ignored(self):
        assert extract_status({"status": True}) is None
        assert extract_code({"code": False}) is None


class TestClassificationProperties:
    """Property-based tests for classifier totality."""

    @given(
        st.one_of(
            st.none(),
            st.integers(),
            st.text(),
            st.floats(allow_nan=True),
            st.dictionaries(
                st.sampled_from(["code", "status", "status_code", "message", "response"]),
                st.one_of(st.none(), st.integers(), st.text(), st.booleans(), st.lists(st.integers())),
            ),
        )
    )
    def test_classify_is_total(self, raw):
        """Any input maps to exactly one ErrorKind without raising."""
        assert isinstance(classify(raw), ErrorKind)

    @given(st.integers(min_value=500, max_value=10_000))
    def test_any_5xx_is_server(self, status):
        assert classify({"status": status}) == ErrorKind.SERVER

    @given(st.dictionaries(st.text(), st.text()))
    def test_deterministic(self, raw):
        assert classify(raw) == classify(raw)
