"""
Ledger Error Taxonomy

Every failure surfaced by the ledger carries a distinguishing ``kind`` so a
caller can react differently (prompt for re-entry on a validation problem,
show a generic failure on a consistency problem).

Errors are recovered at the operation boundary. Nothing here is retried.
"""

from typing import Any, Optional, TypeVar

import pydantic
from pydantic import BaseModel


ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerError(Exception):
    """Base exception for all ledger operations."""

    kind = "ledger"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Caller-visible representation of the failure."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """A required field is missing or malformed. No partial write happened."""

    kind = "validation"

    @classmethod
    def from_pydantic(cls, exc: pydantic.ValidationError) -> "ValidationError":
        issues = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "request",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        summary = "; ".join(f"{i['field']}: {i['message']}" for i in issues)
        return cls(f"Invalid request: {summary}", details={"issues": issues})


class NotFoundError(LedgerError):
    """The operation references an id that does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity.capitalize()} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class ConsistencyError(LedgerError):
    """
    A balance update could not be made atomic with its paired row write.

    Raised only after the unit of work has been rolled back (or compensated),
    so no half-applied transaction is ever visible.
    """

    kind = "consistency"


class CollaboratorError(LedgerError):
    """Interpreter, transcriber or reviewer failure. Happens before any write."""

    kind = "collaborator"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message, details={"service": service})


def build_request(model: type[ModelT], data: Any) -> ModelT:
    """
    Build a request model from a dict (or pass an instance through).

    Pydantic validation failures are translated into ``ValidationError`` so
    callers only ever see the ledger taxonomy.
    """
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError.from_pydantic(e) from e
