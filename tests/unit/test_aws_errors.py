from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from pretender_py.aws_errors import map_client_error, map_transaction_error, to_client_error
from pretender_py.errors import (
    AwsError,
    CancellationReason,
    ConditionFailedError,
    NotFoundError,
    PretenderPyError,
    StoreError,
    TableExistsError,
    TransactionCanceledError,
    ValidationError,
)


@pytest.mark.parametrize(
    "err, code, status",
    [
        (ConditionFailedError("The conditional request failed"), "ConditionalCheckFailedException", 400),
        (ValidationError("bad"), "ValidationException", 400),
        (NotFoundError("missing"), "ResourceNotFoundException", 400),
        (TableExistsError("exists"), "ResourceInUseException", 400),
        (StoreError("disk"), "InternalServerError", 500),
        (AwsError(code="ThrottlingException", message="slow down"), "ThrottlingException", 400),
    ],
)
def test_to_client_error_codes(err: PretenderPyError, code: str, status: int) -> None:
    client_error = to_client_error(err, "PutItem")

    assert client_error.response["Error"]["Code"] == code
    assert client_error.response["ResponseMetadata"]["HTTPStatusCode"] == status
    assert client_error.operation_name == "PutItem"


def test_to_client_error_carries_cancellation_reasons() -> None:
    err = TransactionCanceledError(
        message="Transaction cancelled",
        reasons=(CancellationReason("None"), CancellationReason("ConditionalCheckFailed", "The conditional request failed")),
    )
    client_error = to_client_error(err, "TransactWriteItems")

    assert client_error.response["Error"] == {
        "Code": "TransactionCanceledException",
        "Message": "Transaction cancelled",
    }
    assert client_error.response["CancellationReasons"] == [
        {"Code": "None"},
        {"Code": "ConditionalCheckFailed", "Message": "The conditional request failed"},
    ]


def test_map_client_error_inverts_codes() -> None:
    def _err(code: str, **extra: object) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": "m"}, **extra}, "Op")  # type: ignore[arg-type]

    assert isinstance(map_client_error(_err("ConditionalCheckFailedException")), ConditionFailedError)
    assert isinstance(map_client_error(_err("ValidationException")), ValidationError)
    assert isinstance(map_client_error(_err("ResourceNotFoundException")), NotFoundError)
    assert isinstance(map_client_error(_err("ResourceInUseException")), TableExistsError)

    other = map_client_error(_err("ThrottlingException"))
    assert isinstance(other, AwsError)
    assert other.code == "ThrottlingException"

    canceled = map_client_error(
        _err("TransactionCanceledException", CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}])
    )
    assert isinstance(canceled, TransactionCanceledError)
    assert canceled.reason_codes == ("None", "ConditionalCheckFailed")


def test_round_trip_through_client_error_keeps_reasons() -> None:
    err = TransactionCanceledError(message="cancelled", reasons=(CancellationReason("ValidationError", "bad"),))
    back = map_transaction_error(to_client_error(err, "TransactWriteItems"))

    assert isinstance(back, TransactionCanceledError)
    assert back.reasons == err.reasons
    assert back.message == "cancelled"


def test_map_transaction_error_delegates_other_codes() -> None:
    err = ClientError({"Error": {"Code": "ValidationException", "Message": "m"}}, "Op")
    assert isinstance(map_transaction_error(err), ValidationError)
