"""Tests for custom exceptions in core.exceptions."""

from wealth_access.core.exceptions import (
    AppException,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    HierarchyValidationError,
    NotFoundError,
    ServiceUnavailableError,
    StoreUnavailableError,
    UnauthorizedError,
    UserAlreadyExistsError,
    UserNotFoundError,
)


def test_app_exception_to_dict():
    """Test the to_dict method serialization."""
    exc = AppException("Test message", "TEST_CODE", 400, {"key": "value"})
    data = exc.to_dict()
    assert data["error"]["code"] == "TEST_CODE"
    assert data["error"]["message"] == "Test message"
    assert data["error"]["details"]["key"] == "value"
    assert exc.status_code == 400

def test_http_error_instantiation():
    """Test standard HTTP exception instantiations."""
    assert BadRequestError().status_code == 400
    assert UnauthorizedError().status_code == 401
    assert ForbiddenError().status_code == 403

    not_found = NotFoundError(resource_type="user", resource_id=1)
    assert not_found.status_code == 404
    assert not_found.details["resource_type"] == "user"
    assert not_found.details["resource_id"] == 1

    assert ConflictError().status_code == 409

    svc_unavail = ServiceUnavailableError(retry_after=120)
    assert svc_unavail.status_code == 503
    assert svc_unavail.details["retry_after_seconds"] == 120

def test_domain_error_instantiation():
    """Test domain-specific exception instantiations."""
    user_not_found = UserNotFoundError(user_id=123)
    assert user_not_found.status_code == 404
    assert user_not_found.error_code == "USER_NOT_FOUND"
    assert user_not_found.details["resource_type"] == "user"
    assert user_not_found.details["resource_id"] == 123

    by_key = UserNotFoundError(login_key="rm.one")
    assert by_key.details["resource_id"] == "rm.one"
    assert "rm.one" in by_key.message

    store_down = StoreUnavailableError(original_error="OperationalError")
    assert store_down.status_code == 503
    assert store_down.error_code == "STORE_UNAVAILABLE"
    assert store_down.details["retry_after_seconds"] == 5
    assert store_down.details["original_error"] == "OperationalError"

def test_hierarchy_validation_error_lists_reasons():
    exc = HierarchyValidationError(["first reason", "second reason"], user_id=7)
    assert exc.status_code == 400
    assert exc.error_code == "HIERARCHY_VALIDATION_FAILED"
    assert exc.errors == ["first reason", "second reason"]
    assert exc.details == {"errors": ["first reason", "second reason"], "user_id": 7}
    assert exc.message == "Hierarchy validation failed: first reason; second reason"
    assert isinstance(exc, BadRequestError)

def test_user_already_exists_messages():
    """Test message formatting based on arguments."""
    exc1 = UserAlreadyExistsError(login_key="rm.one", external_id="sub-1")
    assert "login key 'rm.one' or external id 'sub-1'" in exc1.message
    assert exc1.status_code == 409

    exc2 = UserAlreadyExistsError(external_id="sub-1")
    assert "external id 'sub-1'" in exc2.message
    assert exc2.details == {"external_id": "sub-1"}

    exc3 = UserAlreadyExistsError(login_key="rm.one")
    assert "login key 'rm.one'" in exc3.message
