from examsched.core.exceptions import (
    AppError,
    InvalidTransitionError,
    ReferenceDataError,
    ResourceNotFoundError,
    SchedulerError,
    ScopeLockedError,
)


def test_scheduler_error_structure():
    err = SchedulerError(message="Test error", details={"foo": "bar"})
    assert err.status_code == 400
    assert err.message == "Test error"
    assert err.details == {"foo": "bar"}
    assert isinstance(err, AppError)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


def test_domain_errors_map_to_http_statuses():
    assert ResourceNotFoundError("Scheduling failure", "f1").status_code == 404
    assert ReferenceDataError("No venues").status_code == 422
    assert ScopeLockedError("busy").status_code == 409

    err = InvalidTransitionError("resolved", "retry")
    assert err.status_code == 409
    assert err.message == "Cannot retry a failure in status 'resolved'"
    assert err.details == {"current_status": "resolved", "action": "retry"}


def test_app_error_handler_returns_message_and_details(client):
    response = client.get("/api/scheduling/batches/missing-batch")

    assert response.status_code == 404
    assert response.json() == {"message": "Scheduling batch with id missing-batch not found", "details": {}}
