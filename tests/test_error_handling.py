import re

from utils.error_handling import (
    GENERIC_RETRY_MESSAGE,
    ErrorType,
    InvalidGeneratedContentError,
    InvalidInputError,
    ProfileStoreError,
    UpstreamUnavailableError,
    create_error_payload,
    generate_error_id,
)


def test_error_id_format():
    assert re.fullmatch(r"err_\d+_\d{4}", generate_error_id())


def test_profile_store_error_is_an_upstream_failure():
    cause = OSError("connection refused")
    err = ProfileStoreError("read", "lisbon", cause)

    assert isinstance(err, UpstreamUnavailableError)
    assert err.status_code == 503
    assert err.error_type is ErrorType.PROFILE_STORE
    assert err.details["place_key"] == "lisbon"
    assert "OSError" in err.details["cause"]


def test_payload_hides_internal_detail():
    err = ProfileStoreError("write", "lisbon", OSError("password=hunter2"))
    payload = create_error_payload(err)

    assert payload["success"] is False
    assert payload["status_code"] == 503
    assert payload["message"] == GENERIC_RETRY_MESSAGE
    assert "hunter2" not in str(payload)
    assert payload["error_id"].startswith("err_")


def test_payload_keeps_input_error_message():
    payload = create_error_payload(InvalidInputError("Place name is required.", field="place"))
    assert payload["status_code"] == 400
    assert payload["message"] == "Place name is required."


def test_payload_for_unexpected_exception():
    payload = create_error_payload(KeyError("boom"), message="Try later")
    assert payload["status_code"] == 500
    assert payload["message"] == "Try later"


def test_invalid_generated_content_error():
    err = InvalidGeneratedContentError("bad shape", {"error_count": 2})
    assert err.status_code == 502
    assert err.error_type is ErrorType.INVALID_GENERATED_CONTENT
    assert err.details == {"error_count": 2}
