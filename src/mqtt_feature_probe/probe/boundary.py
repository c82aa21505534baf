"""
Boundary Discovery.

Finds the largest size a broker accepts by binary searching a trial
function over `[0, max_candidate]`. Each trial costs a full round of
connects, publishes and disconnects against a live broker, so a linear
scan is not an option.
"""
import logging
from typing import Callable, List, Optional

from mqtt_feature_probe.probe.models import DiscoveryResult, ProbeOutcome, SizedProbeResult

logger = logging.getLogger(__name__)

Trial = Callable[[int], ProbeOutcome]


def discover_boundary(max_candidate: int,
                      trial: Trial,
                      on_boundary_found: Optional[Callable[[int], None]] = None) -> DiscoveryResult:
    """
    Searches the largest candidate for which `trial` succeeds.

    Assumes acceptance is monotonic in the size. The first trial is always
    `max_candidate` itself; if it succeeds no search is needed. Otherwise the
    returned boundary is the midpoint examined last, which can be a candidate
    that failed. Use `DiscoveryResult.confirmed_boundary` for the largest
    candidate that actually passed.
    """
    if max_candidate < 0:
        raise ValueError(f"max_candidate must not be negative, got {max_candidate}")

    trials: List[SizedProbeResult] = []

    def attempt(size: int) -> bool:
        outcome = trial(size)
        trials.append(SizedProbeResult(size=size, outcome=outcome))
        logger.debug(f"Trial with size {size}: {outcome}")
        return outcome.ok

    if attempt(max_candidate):
        boundary = max_candidate
    else:
        bottom, top = 0, max_candidate
        mid = -1
        while bottom <= top:
            mid = (bottom + top) // 2
            if attempt(mid):
                bottom = mid + 1
            else:
                top = mid - 1
        boundary = mid

    logger.info(f"Boundary search finished at {boundary} after {len(trials)} trial(s)")
    if on_boundary_found is not None:
        on_boundary_found(boundary)
    return DiscoveryResult(boundary=boundary, trials=tuple(trials))
