import math
from typing import Any

from reconciliation.models import CourseAggregate, CourseProjection, Projection

DEFAULT_TARGET_PERCENTAGE = 75.0
MIN_TARGET = 1.0
MAX_TARGET = 100.0

# Above target by less than this fraction of a class reports is_exact, not
# can_bunk=0.
BORDERLINE_THRESHOLD = 0.9


def resolve_target(target_percentage: Any = None) -> float:
    """Clamp to [1, 100]; absent or non-numeric targets fall back to 75."""
    if target_percentage is None or isinstance(target_percentage, bool):
        return DEFAULT_TARGET_PERCENTAGE
    try:
        target = float(target_percentage)
    except (TypeError, ValueError):
        return DEFAULT_TARGET_PERCENTAGE
    if not math.isfinite(target):
        return DEFAULT_TARGET_PERCENTAGE
    return min(MAX_TARGET, max(MIN_TARGET, target))


def project(present: Any, total: Any, target_percentage: Any = None) -> Projection:
    """
    Bunk projection for `present` out of `total` classes against a target %.

    - below target: `required_to_attend` is the smallest x with
      (present + x) / (total + x) >= target
    - above target: `can_bunk` is the largest x with
      present / (total + x) >= target
    - exactly at target (or above it by under BORDERLINE_THRESHOLD of a
      class): `is_exact`

    Invalid counts are clamped, never rejected: total <= 0 gives the zero
    result, present is clamped to [0, total].
    """
    target = resolve_target(target_percentage)
    zero = Projection(target_percentage=target)

    try:
        total_value = float(total)
        present_value = float(present)
    except (TypeError, ValueError):
        return zero
    if not math.isfinite(total_value) or total_value <= 0:
        return zero
    if not math.isfinite(present_value):
        return zero
    present_value = min(total_value, max(0.0, present_value))

    # 100*present vs target*total: same ordering as present/total*100 vs target
    scaled_present = 100 * present_value
    scaled_target = target * total_value

    if scaled_present == scaled_target:
        return Projection(is_exact=True, target_percentage=target)

    if scaled_present < scaled_target:
        if target >= MAX_TARGET:
            required = total_value - present_value
        else:
            required = (scaled_target - scaled_present) / (MAX_TARGET - target)
        return Projection(
            required_to_attend=max(0, math.ceil(required)),
            target_percentage=target,
        )

    bunkable_exact = (scaled_present - scaled_target) / target
    bunkable = math.floor(bunkable_exact)
    if 0 < bunkable_exact < BORDERLINE_THRESHOLD and bunkable == 0:
        return Projection(is_exact=True, target_percentage=target)
    return Projection(can_bunk=max(0, bunkable), target_percentage=target)


def project_course(aggregate: CourseAggregate, target_percentage: Any = None) -> CourseProjection:
    """Safe projection from official counts, extra projection from adjusted counts."""
    return CourseProjection(
        course_id=aggregate.course_id,
        safe=project(aggregate.official_present, aggregate.official_total, target_percentage),
        extra=project(aggregate.adjusted_present, aggregate.adjusted_total, target_percentage),
    )


def project_all(
    aggregates: dict[str, CourseAggregate],
    target_percentage: Any = None,
) -> dict[str, CourseProjection]:
    return {
        course_id: project_course(aggregate, target_percentage)
        for course_id, aggregate in aggregates.items()
    }
