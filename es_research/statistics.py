"""Sample size planning and proportion confidence intervals."""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from scipy import stats

from .constants import FORK_BUCKETS, MAX_VARIANCE_PROPORTION, STAR_BUCKETS
from .exceptions import ConfigurationError
from .models import ConfidenceInterval, RepositoryRecord

logger = logging.getLogger(__name__)


def z_critical(confidence_level: float) -> float:
    """Return the two-tailed standard normal critical value.

    Args:
        confidence_level: Confidence level strictly between 0 and 1

    Returns:
        z such that P(-z <= Z <= z) equals the confidence level

    Raises:
        ConfigurationError: If confidence level is outside (0, 1)
    """
    if not 0 < confidence_level < 1:
        raise ConfigurationError(
            f"confidence_level must be between 0 and 1, got {confidence_level}"
        )
    return float(stats.norm.ppf((1 + confidence_level) / 2))


def required_sample_size(confidence_level: float, margin_of_error: float) -> int:
    """Minimum sample size for estimating a proportion.

    Uses the Wald normal approximation with the maximum-variance proportion
    p = 0.5: ``n = ceil(z^2 * p * (1 - p) / E^2)``.

    Args:
        confidence_level: Confidence level strictly between 0 and 1
        margin_of_error: Desired margin of error strictly between 0 and 1

    Returns:
        Sample size, always at least 1

    Raises:
        ConfigurationError: If either input is outside (0, 1)
    """
    if not 0 < margin_of_error < 1:
        raise ConfigurationError(
            f"margin_of_error must be between 0 and 1, got {margin_of_error}"
        )
    z = z_critical(confidence_level)
    p = MAX_VARIANCE_PROPORTION
    # Round off float noise before ceil so that exact products are not bumped.
    raw = round((z * z) * p * (1 - p) / (margin_of_error * margin_of_error), 9)
    return max(1, math.ceil(raw))


def _check_counts(successes: int, total: int) -> None:
    if total < 0:
        raise ValueError(f"total must be non-negative, got {total}")
    if not 0 <= successes <= total:
        raise ValueError(f"successes must be in [0, {total}], got {successes}")


def confidence_interval(
    successes: int, total: int, confidence_level: float = 0.95
) -> ConfidenceInterval:
    """Normal-approximation (Wald) interval for a proportion.

    An empty sample has no estimable prevalence and yields ``{0, 0, 0}``.

    Args:
        successes: Number of units exhibiting the property
        total: Number of units observed
        confidence_level: Confidence level strictly between 0 and 1

    Returns:
        Interval with lower, upper and margin in [0, 1]

    Raises:
        ValueError: If successes is outside [0, total]
        ConfigurationError: If confidence level is outside (0, 1)
    """
    _check_counts(successes, total)
    z = z_critical(confidence_level)
    if total == 0:
        return ConfidenceInterval(0.0, 0.0, 0.0)

    p = successes / total
    margin = z * math.sqrt(p * (1 - p) / total)
    return ConfidenceInterval(
        lower=max(0.0, p - margin),
        upper=min(1.0, p + margin),
        margin=min(1.0, margin),
    )


def wilson_interval(
    successes: int, total: int, confidence_level: float = 0.95
) -> ConfidenceInterval:
    """Wilson score interval for a proportion.

    Better behaved than the Wald interval for small samples or proportions
    close to 0 or 1. ``margin`` is half the interval width.
    """
    _check_counts(successes, total)
    z = z_critical(confidence_level)
    if total == 0:
        return ConfidenceInterval(0.0, 0.0, 0.0)

    p = successes / total
    z2 = z * z
    denominator = 1 + z2 / total
    centre = (p + z2 / (2 * total)) / denominator
    half_width = (z / denominator) * math.sqrt(p * (1 - p) / total + z2 / (4 * total * total))
    lower = max(0.0, centre - half_width)
    upper = min(1.0, centre + half_width)
    # Guard float drift at the boundaries so the point estimate stays inside.
    lower = min(lower, p)
    upper = max(upper, p)
    return ConfidenceInterval(lower=lower, upper=upper, margin=(upper - lower) / 2)


def _bucket_counts(values: Iterable[int], buckets) -> Dict[str, int]:
    counts = {label: 0 for label, _, _ in buckets}
    for value in values:
        for label, low, high in buckets:
            if value >= low and (high is None or value <= high):
                counts[label] += 1
                break
    return counts


def describe_sample(records: List[RepositoryRecord]) -> Dict[str, object]:
    """Descriptive statistics of a sample: popularity, age and languages.

    Args:
        records: Sampled repository records

    Returns:
        Dictionary with star/fork summaries, creation date range, language
        histogram and star/fork distribution buckets. Empty for no records.
    """
    if not records:
        return {}

    stars = [record.stars for record in records]
    forks = [record.forks for record in records]
    created: List[datetime] = [
        dt for dt in (record.created_datetime() for record in records) if dt is not None
    ]
    earliest: Optional[str] = min(created).date().isoformat() if created else None
    latest: Optional[str] = max(created).date().isoformat() if created else None
    languages = Counter(record.language or "unknown" for record in records)

    return {
        "total_projects": len(records),
        "stars": {
            "average": round(sum(stars) / len(stars)),
            "min": min(stars),
            "max": max(stars),
        },
        "forks": {
            "average": round(sum(forks) / len(forks)),
            "min": min(forks),
            "max": max(forks),
        },
        "date_range": {"earliest": earliest, "latest": latest},
        "languages": dict(sorted(languages.items(), key=lambda item: (-item[1], item[0]))),
        "star_distribution": _bucket_counts(stars, STAR_BUCKETS),
        "fork_distribution": _bucket_counts(forks, FORK_BUCKETS),
    }
