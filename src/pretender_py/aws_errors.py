from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from .errors import (
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

_ERROR_CODES: tuple[tuple[type[PretenderPyError], str, int], ...] = (
    (ConditionFailedError, "ConditionalCheckFailedException", 400),
    (ValidationError, "ValidationException", 400),
    (NotFoundError, "ResourceNotFoundException", 400),
    (TableExistsError, "ResourceInUseException", 400),
    (TransactionCanceledError, "TransactionCanceledException", 400),
    (StoreError, "InternalServerError", 500),
)


def to_client_error(err: PretenderPyError, operation_name: str) -> ClientError:
    if isinstance(err, AwsError):
        code, status, message = err.code, 400, err.message
    else:
        code, status = "InternalServerError", 500
        for error_type, error_code, error_status in _ERROR_CODES:
            if isinstance(err, error_type):
                code, status = error_code, error_status
                break
        message = err.message if isinstance(err, TransactionCanceledError) else str(err)

    response: dict[str, Any] = {
        "Error": {"Code": code, "Message": message},
        "ResponseMetadata": {"HTTPStatusCode": status},
    }
    if isinstance(err, TransactionCanceledError):
        response["CancellationReasons"] = [_reason_to_wire(reason) for reason in err.reasons]
    return ClientError(response, operation_name)


def map_client_error(err: ClientError) -> Exception:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message)
    if code == "ValidationException":
        return ValidationError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message)
    if code == "ResourceInUseException":
        return TableExistsError(message)
    if code == "TransactionCanceledException":
        return map_transaction_error(err)

    return AwsError(code=code or "UnknownError", message=message or str(err))


def map_transaction_error(err: ClientError) -> Exception:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code != "TransactionCanceledException":
        return map_client_error(err)

    reasons_raw = err.response.get("CancellationReasons") or []
    reasons = tuple(
        CancellationReason(code=str(reason.get("Code", "None")), message=reason.get("Message"))
        for reason in reasons_raw
        if isinstance(reason, dict)
    )
    return TransactionCanceledError(message=message or "transaction canceled", reasons=reasons)


def _reason_to_wire(reason: CancellationReason) -> dict[str, str]:
    wire = {"Code": reason.code}
    if reason.message is not None:
        wire["Message"] = reason.message
    return wire
