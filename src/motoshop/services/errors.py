from __future__ import annotations


class SettlementError(Exception):
    code = "SETTLEMENT_ERROR"

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(SettlementError):
    code = "VALIDATION_ERROR"


class NotFoundError(SettlementError):
    code = "NOT_FOUND"


class ConflictError(SettlementError):
    code = "CONFLICT"


class StockUnderflowError(SettlementError):
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        *,
        part_id: int,
        branch_id: str,
        available: int,
        requested: int,
        part_name: str | None = None,
    ) -> None:
        self.part_id = part_id
        self.branch_id = branch_id
        self.available = available
        self.requested = requested
        label = part_name or f"part_id={part_id}"
        super().__init__(
            message=f"Not enough stock for {label} at {branch_id} (available {available}, requested {requested})"
        )


class RemoteWriteError(SettlementError):
    """A store call failed. `primary_applied` tells whether the work order row was already written."""

    code = "REMOTE_WRITE_FAILED"

    def __init__(
        self,
        *,
        step: str,
        reference: str | None = None,
        primary_applied: bool = False,
        cause: Exception | None = None,
    ) -> None:
        self.step = step
        self.reference = reference
        self.primary_applied = primary_applied
        msg = f"Write failed at step '{step}'"
        if reference:
            msg += f" for {reference}"
        if primary_applied:
            msg += " (work order already saved, later effects may be incomplete)"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(message=msg)
