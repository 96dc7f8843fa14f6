from __future__ import annotations

from dataclasses import dataclass


class PretenderPyError(Exception):
    pass


class ConditionFailedError(PretenderPyError):
    pass


class NotFoundError(PretenderPyError):
    pass


class ValidationError(PretenderPyError):
    pass


class TableExistsError(PretenderPyError):
    pass


class StoreError(PretenderPyError):
    pass


@dataclass(frozen=True)
class CancellationReason:
    code: str
    message: str | None = None


class TransactionCanceledError(PretenderPyError):
    def __init__(self, *, message: str, reasons: tuple[CancellationReason, ...]) -> None:
        codes = ", ".join(reason.code for reason in reasons)
        super().__init__(f"{message} [{codes}]")
        self.message = message
        self.reasons = reasons

    @property
    def reason_codes(self) -> tuple[str, ...]:
        return tuple(reason.code for reason in self.reasons)


class AwsError(PretenderPyError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
