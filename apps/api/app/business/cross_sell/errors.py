from __future__ import annotations


class CrossSellMatrixError(Exception):
    """Base error for cross-sell matrix queries."""

    status_code = 500
    message = "Failed to generate cross-sell matrix"


class SnapshotReadError(CrossSellMatrixError):
    """Raised when one of the input collections cannot be read from storage."""

    def __init__(self, collection: str, cause: Exception) -> None:
        self.collection = collection
        self.cause = cause
        super().__init__(f"Failed to read {collection}: {cause}")


class InvalidMatrixFilterError(CrossSellMatrixError):
    status_code = 400
    message = "Invalid cross-sell matrix filter"

    def __init__(self, filter_name: str, value: object, reason: str) -> None:
        self.filter_name = filter_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value {value!r} for filter '{filter_name}': {reason}")


class MatrixTimeoutError(CrossSellMatrixError):
    status_code = 504
    message = "Cross-sell matrix generation timed out"

    def __init__(self, timeout_seconds: float, clients_processed: int) -> None:
        self.timeout_seconds = timeout_seconds
        self.clients_processed = clients_processed
        super().__init__(
            f"Matrix generation exceeded {timeout_seconds:g}s after {clients_processed} clients"
        )
