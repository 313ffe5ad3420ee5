"""Turn raw discovery results into a validated, ranked sample."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List

from .exceptions import SelectionError
from .models import (
    PopulationCriteria,
    RepositoryRecord,
    SelectionResult,
    ValidationOutcome,
    ValidationStatus,
)
from .runner import BoundedConcurrencyRunner, Task
from .validator import ProjectValidator

logger = logging.getLogger(__name__)


def deduplicate(discovery_results: Iterable[Iterable[RepositoryRecord]]) -> List[RepositoryRecord]:
    """Flatten strategy results, keeping the first record seen per identity."""

    unique: Dict[str, RepositoryRecord] = {}
    for records in discovery_results:
        for record in records:
            if record.full_name not in unique:
                unique[record.full_name] = record
    return list(unique.values())


def meets_criteria(record: RepositoryRecord, criteria: PopulationCriteria) -> bool:
    """Check popularity thresholds and the creation date bound.

    A record without a parseable creation timestamp fails the date bound.
    """
    if record.stars < criteria.min_stars or record.forks < criteria.min_forks:
        return False
    created = record.created_datetime()
    return created is not None and created >= criteria.created_after_datetime


def rank(records: Iterable[RepositoryRecord]) -> List[RepositoryRecord]:
    """Order by stars descending, ties by identity ascending."""
    return sorted(records, key=lambda record: (-record.stars, record.full_name))


class SampleSelector:
    """Deduplicate, validate, filter, rank and truncate candidates.

    Args:
        validator: Membership validator for single records
        batch_size: Number of validations run concurrently per batch
        batch_delay: Cooperative pause between validation batches, in seconds
        include_indeterminate: Keep candidates whose membership could not be
            determined instead of excluding them
    """

    def __init__(
        self,
        validator: ProjectValidator,
        batch_size: int = 10,
        batch_delay: float = 0.0,
        include_indeterminate: bool = False,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.validator = validator
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.include_indeterminate = include_indeterminate

    async def _validate_all(
        self, candidates: List[RepositoryRecord]
    ) -> Dict[str, ValidationOutcome]:
        runner = BoundedConcurrencyRunner(concurrency=self.batch_size)
        outcomes: Dict[str, ValidationOutcome] = {}

        for start in range(0, len(candidates), self.batch_size):
            if start and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            batch = candidates[start : start + self.batch_size]
            tasks = [
                Task(record.full_name, lambda record=record: self.validator.validate(record))
                for record in batch
            ]
            for result in await runner.run(tasks):
                if result.ok:
                    outcomes[result.key] = result.value
                else:
                    outcomes[result.key] = ValidationOutcome.indeterminate(result.error_message)
            logger.debug("Validated %d/%d candidates", len(outcomes), len(candidates))

        return outcomes

    async def select(
        self,
        discovery_results: Iterable[Iterable[RepositoryRecord]],
        criteria: PopulationCriteria,
    ) -> SelectionResult:
        """Select the sample for one run.

        Args:
            discovery_results: One list of records per discovery strategy
            criteria: Population criteria of this run

        Returns:
            Selection result holding the sample and the validation accounting

        Raises:
            SelectionError: If no candidate survives validation
            CriticalError: If validation hits a pipeline-stopping failure
        """
        candidates = deduplicate(discovery_results)
        logger.info("Validating %d unique candidates", len(candidates))
        outcomes = await self._validate_all(candidates)

        retained: List[RepositoryRecord] = []
        invalid: Dict[str, ValidationOutcome] = {}
        indeterminate: Dict[str, ValidationOutcome] = {}
        for record in candidates:
            outcome = outcomes[record.full_name]
            if outcome.status is ValidationStatus.VALID:
                retained.append(record)
            elif outcome.status is ValidationStatus.INDETERMINATE:
                indeterminate[record.full_name] = outcome
                if self.include_indeterminate:
                    retained.append(record)
            else:
                invalid[record.full_name] = outcome

        total_valid = len(retained)
        if not retained:
            raise SelectionError(
                f"No candidate survived validation ({len(candidates)} found, "
                f"{len(invalid)} invalid, {len(indeterminate)} indeterminate)"
            )
        if indeterminate:
            logger.warning(
                "%d candidates could not be validated and were %s",
                len(indeterminate),
                "kept" if self.include_indeterminate else "excluded",
            )

        eligible = [record for record in retained if meets_criteria(record, criteria)]
        sample = rank(eligible)[: criteria.sample_size]

        warnings: List[str] = []
        if len(sample) < criteria.sample_size:
            warnings.append(
                f"Only {len(sample)} projects met the population criteria; "
                f"requested sample size was {criteria.sample_size}"
            )

        return SelectionResult(
            sample=sample,
            total_found=len(candidates),
            total_valid=total_valid,
            invalid=invalid,
            indeterminate=indeterminate,
            filtered_out=total_valid - len(eligible),
            warnings=warnings,
        )
