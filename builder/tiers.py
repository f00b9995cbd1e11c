"""Dependency tiers for build steps."""

from typing import Dict, List, Sequence

from loguru import logger

from errors import BuildError

from .models import BuildStep


def resolve_tiers(steps: Sequence[BuildStep]) -> List[List[BuildStep]]:
    """Partition steps into tiers by their declared ``depends_on`` entries.

    A dependency names another step or a framework. Tier 0 holds steps with no
    known prerequisite; tier k holds steps whose prerequisites all sit in
    earlier tiers. Input order is kept within a tier. Unknown names are
    ignored with a warning and cycles raise ``BuildError``.
    """
    by_name: Dict[str, int] = {}
    by_framework: Dict[str, List[int]] = {}
    for index, step in enumerate(steps):
        by_name[step.name] = index
        if step.framework:
            by_framework.setdefault(step.framework, []).append(index)

    prerequisites: Dict[int, set] = {}
    for index, step in enumerate(steps):
        needed = set()
        for dependency in step.depends_on:
            if dependency in by_name:
                needed.add(by_name[dependency])
            elif dependency in by_framework:
                needed.update(by_framework[dependency])
            else:
                logger.warning(f"Build step {step.name} depends on unknown '{dependency}', ignoring")
        needed.discard(index)
        prerequisites[index] = needed

    tiers: List[List[BuildStep]] = []
    placed: set = set()
    remaining = list(range(len(steps)))
    while remaining:
        ready = [i for i in remaining if prerequisites[i] <= placed]
        if not ready:
            names = ", ".join(steps[i].name for i in remaining)
            raise BuildError(f"Circular build dependencies between: {names}")
        tiers.append([steps[i] for i in ready])
        placed.update(ready)
        remaining = [i for i in remaining if i not in placed]

    return tiers
