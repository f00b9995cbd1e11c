"""Detection pipeline: platforms, suites and build requirements."""

from .build import BuildRequirementResolver
from .platform import Platform, PlatformDetector, platforms_from_record
from .scanner import ProjectScanner, ScanPhase
from .suites import Suite, TestSuiteDetector, suites_from_record

__all__ = [
    "BuildRequirementResolver",
    "Platform",
    "PlatformDetector",
    "ProjectScanner",
    "ScanPhase",
    "Suite",
    "TestSuiteDetector",
    "platforms_from_record",
    "suites_from_record",
]
