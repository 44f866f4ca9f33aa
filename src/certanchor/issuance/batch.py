"""Batch issuance: fixed-size groups, items concurrent within a group."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from certanchor.common.exceptions import CertAnchorError, ValidationError
from certanchor.issuance.orchestrator import IssuanceOrchestrator, IssuanceResult
from certanchor.issuance.schemas import IssuanceRequest, missing_fields, normalize_item

logger = logging.getLogger(__name__)


@dataclass
class BatchItemSuccess:
    index: int
    result: IssuanceResult


@dataclass
class BatchItemFailure:
    index: int
    subject_name: Optional[str]
    error: str
    code: str


@dataclass
class BatchResult:
    total: int
    successful: list[BatchItemSuccess] = field(default_factory=list)
    failed: list[BatchItemFailure] = field(default_factory=list)


class BatchCoordinator:
    """Runs many issuances with bounded parallelism and per-item isolation."""

    def __init__(self, orchestrator: IssuanceOrchestrator, max_items: int = 50, group_size: int = 5):
        self.orchestrator = orchestrator
        self.max_items = max_items
        self.group_size = max(1, group_size)

    def validate_batch(self, items: Sequence[Any], issued_by: str) -> None:
        if not items:
            raise ValidationError("Batch must contain at least one item", fields=["items"])
        if len(items) > self.max_items:
            raise ValidationError(
                f"Batch of {len(items)} exceeds the maximum of {self.max_items} items",
                fields=["items"],
            )
        if not issued_by or not issued_by.strip():
            raise ValidationError("issued_by is required", fields=["issued_by"])

    async def issue_batch(self, items: Sequence[Any], issued_by: str) -> BatchResult:
        self.validate_batch(items, issued_by)
        result = BatchResult(total=len(items))
        outcomes: list[BatchItemSuccess | BatchItemFailure] = []

        for start in range(0, len(items), self.group_size):
            group = items[start:start + self.group_size]
            outcomes.extend(await asyncio.gather(*(
                self._issue_one(start + offset, item, issued_by)
                for offset, item in enumerate(group)
            )))

        for outcome in outcomes:
            if isinstance(outcome, BatchItemSuccess):
                result.successful.append(outcome)
            else:
                result.failed.append(outcome)

        logger.info(
            "Batch issuance complete: %d ok, %d failed",
            len(result.successful), len(result.failed),
            extra={"issued_by": issued_by, "total": result.total},
        )
        return result

    async def _issue_one(
        self, index: int, item: Any, issued_by: str,
    ) -> BatchItemSuccess | BatchItemFailure:
        if not isinstance(item, Mapping):
            return BatchItemFailure(index, None, "Item must be an object", "VALIDATION_ERROR")

        data = normalize_item(item)
        subject_name = data.get("subject_name") if isinstance(data.get("subject_name"), str) else None
        missing = missing_fields(data)
        if missing:
            return BatchItemFailure(
                index, subject_name,
                f"Missing required fields: {', '.join(missing)}", "VALIDATION_ERROR",
            )
        try:
            request = IssuanceRequest.model_validate({**data, "issued_by": issued_by})
        except PydanticValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            return BatchItemFailure(
                index, subject_name,
                f"Invalid fields: {', '.join(fields)}", "VALIDATION_ERROR",
            )

        try:
            issued = await self.orchestrator.issue(request)
        except CertAnchorError as exc:
            return BatchItemFailure(index, subject_name, exc.message, exc.code)
        except Exception as exc:
            logger.exception("Unexpected failure issuing batch item %d", index)
            return BatchItemFailure(index, subject_name, str(exc) or type(exc).__name__, "ISSUANCE_FAILED")
        return BatchItemSuccess(index=index, result=issued)
