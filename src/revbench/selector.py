"""Choosing which unmeasured revisions to process in one run.

Small gaps (a handful of new revisions since the last run) are filled
completely.  Large backlogs, such as the first run over the full history,
are sampled sparsely so one invocation stays bounded; later runs fill in
between the sampled points.
"""

from __future__ import annotations

from typing import Sequence

from revbench.revisions import Revision

# At or below this many missing revisions, measure all of them.
DENSE_THRESHOLD = 5
# Above the threshold, measure every SPARSE_STEP-th missing revision.
SPARSE_STEP = 30


def select_revisions(
    all_revisions: Sequence[Revision],
    missing: Sequence[Revision],
    *,
    dense_threshold: int = DENSE_THRESHOLD,
    sparse_step: int = SPARSE_STEP,
) -> list[Revision]:
    """Select the revisions to measure from *missing*, preserving order.

    Args:
        all_revisions: The full history *missing* was computed from.
        missing: Revisions without a record, oldest first.
        dense_threshold: Largest backlog that is processed in full.
        sparse_step: Stride through larger backlogs, starting at index 0.

    Raises:
        ValueError: If *sparse_step* is not positive or a missing revision
            is not part of *all_revisions*.
    """
    if sparse_step < 1:
        raise ValueError(f"sparse_step must be at least 1 (got {sparse_step})")
    known = {rev.id for rev in all_revisions}
    for rev in missing:
        if rev.id not in known:
            raise ValueError(f"Missing revision {rev.id} is not in the revision history")

    if len(missing) <= dense_threshold:
        return list(missing)
    return list(missing[::sparse_step])
