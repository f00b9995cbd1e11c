"""Build scheduling, test image packaging and verification."""

from .models import BuildReport, BuildStep, PackagedImage, StepOutcome
from .packaging import TestImageBuilder, image_tag
from .scheduler import BuildScheduler
from .tiers import resolve_tiers

__all__ = [
    "BuildReport",
    "BuildScheduler",
    "BuildStep",
    "PackagedImage",
    "StepOutcome",
    "TestImageBuilder",
    "image_tag",
    "resolve_tiers",
]
