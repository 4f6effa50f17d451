"""Tests for tm_common.errors and tm_common.response."""

from src.tm_common.errors import (
    SUPPORT_MESSAGE,
    AppError,
    BidTooLowError,
    ConsistencyError,
    DuplicateListingError,
    ListingValidationError,
    ReconciliationRequiredError,
    SaleInProgressError,
    StaleListingError,
)
from src.tm_common.response import error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.http_status == 500
        assert err.public_message == "Internal error"


class TestSpecificErrors:
    def test_validation_reasons_joined(self) -> None:
        err = ListingValidationError(["Price too low", "Event cancelled"])
        assert err.code == 1001
        assert err.http_status == 422
        assert err.reasons == ["Price too low", "Event cancelled"]
        assert "Event cancelled" in err.message

    def test_bid_too_low_carries_minimum(self) -> None:
        err = BidTooLowError(110, "1.10 USDC")
        assert err.minimum == 110
        assert "1.10 USDC" in err.message

    def test_concurrency_errors_are_409(self) -> None:
        assert StaleListingError("lst_1").http_status == 409
        assert DuplicateListingError("tkt_1").http_status == 409
        assert SaleInProgressError("lst_1").code == 3004

    def test_consistency_errors_hide_internals(self) -> None:
        err = ConsistencyError("ticket tkt_1 disagrees")
        assert err.public_message == SUPPORT_MESSAGE
        assert "tkt_1" in err.message

    def test_reconciliation_required_keeps_tx(self) -> None:
        err = ReconciliationRequiredError("lst_1", "tx_9", "db down")
        assert err.transaction_ref == "tx_9"
        assert err.public_message == SUPPORT_MESSAGE


class TestResponse:
    def test_success(self) -> None:
        resp = success_response({"id": "lst_1"})
        assert resp.code == 0
        assert resp.data == {"id": "lst_1"}
        assert resp.request_id.startswith("req_")

    def test_error_with_details(self) -> None:
        resp = error_response(1001, "bad", ["a", "b"])
        assert resp.code == 1001
        assert resp.data == {"details": ["a", "b"]}

    def test_error_without_details(self) -> None:
        assert error_response(2001, "missing").data is None
