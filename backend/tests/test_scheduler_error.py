from app.core.exceptions import (
    AppError,
    AuthorizationError,
    ConflictError,
    ResourceNotFoundError,
    SchedulerError,
    StaleWriteError,
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
    assert err.conflicts == []


def test_conflict_error_carries_conflicts():
    err = ConflictError("Teacher busy", conflicts=[{"conflict_type": "teacher_double_booked"}])
    assert err.status_code == 409
    assert err.conflicts == [{"conflict_type": "teacher_double_booked"}]


def test_stale_write_is_a_retryable_conflict():
    err = StaleWriteError(details={"current_version": 3})
    assert isinstance(err, ConflictError)
    assert err.status_code == 409
    assert err.details == {"retryable": True, "current_version": 3}


def test_not_found_and_forbidden():
    assert ResourceNotFoundError("Class", "c1").message == "Class with id c1 not found"
    assert ResourceNotFoundError("Class", "c1").status_code == 404
    assert AuthorizationError().status_code == 403
