"""Post-generation verification and regeneration of missing tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from matterflow.core.structured_logging import build_log_context
from matterflow.services import task_service, template_service
from matterflow.services.http_service import SleepFn
from matterflow.services.task_generation import GenerationResult, GenerationScope, TaskEngine
from matterflow.services.template_service import ParsedTemplate

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    expected: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)
    regenerated: int = 0
    failed: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing

    def as_dict(self) -> dict[str, Any]:
        return {
            "expected": self.expected,
            "missing": self.missing,
            "regenerated": self.regenerated,
            "failed": self.failed,
            "failures": self.failures,
        }


async def verify_generation(
    engine: TaskEngine,
    scope: GenerationScope,
    templates: list[ParsedTemplate],
    *,
    settle_seconds: float,
    sleep: SleepFn = asyncio.sleep,
) -> VerificationResult:
    """
    Regenerate every expected template number without a live record.

    Meeting scopes only count records owned by the calendar entry.
    """
    if settle_seconds:
        await sleep(settle_seconds)

    expected = sorted(template_service.expected_task_numbers(templates))
    recorded = task_service.get_recorded_task_numbers(
        engine.db,
        scope.matter.id,
        scope.stage_id,
        calendar_entry_id=scope.calendar_entry_id,
    )
    missing = [number for number in expected if number not in recorded]
    result = VerificationResult(expected=expected, missing=missing)
    log_context = build_log_context(
        matter_id=scope.matter.id, calendar_entry_id=scope.calendar_entry_id
    )

    if not missing:
        logger.info("Verification passed: %s tasks present", len(expected), extra=log_context)
        return result

    logger.warning(
        "Verification found %s missing tasks: %s", len(missing), missing, extra=log_context
    )
    regenerated: GenerationResult = await engine.regenerate(scope, templates, missing)
    result.regenerated = regenerated.created
    result.failed = regenerated.failed
    result.failures = [failure.as_dict() for failure in regenerated.failures]
    return result
