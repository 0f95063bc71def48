"""Pure time accounting calculations."""

from timekeeping_engine.calculators.overtime import (
    ClassificationInvariantError,
    classify,
    compute_overtime,
    reclassify_segments,
)
from timekeeping_engine.calculators.rounding import apply_rounding
from timekeeping_engine.calculators.segment_builder import build_span, compute_segments

__all__ = [
    "ClassificationInvariantError",
    "apply_rounding",
    "build_span",
    "classify",
    "compute_overtime",
    "compute_segments",
    "reclassify_segments",
]
