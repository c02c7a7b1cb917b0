"""
Greedy caliper matching within a single stratum, using numpy vectorized distances.
"""

from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from calipermatch.datatypes import MatchedPair, Stratum, Subject
from calipermatch.utils.logging import get_logger

logger = get_logger(__name__)

TREATED_ORDERS = ("id", "largest", "smallest", "random")


class StratumMatch(NamedTuple):
    """Pairs and leftovers of one stratum."""
    pairs: List[MatchedPair]
    unmatched_treated: List[Any]
    unmatched_control: List[Any]


def greedy_match_stratum(
    stratum: Stratum,
    threshold: float,
    order: str = "id",
    rng: Optional[np.random.RandomState] = None,
) -> StratumMatch:
    """Greedy 1:1 nearest-neighbor matching on logit propensity without replacement.

    Each treated subject, in processing order, takes the closest still-unused
    control of the stratum. Ties go to the lowest control id. A treated
    subject whose closest available control is farther than the threshold
    stays unmatched.

    Args:
        stratum: Stratum with treated and control subjects sorted by id
        threshold: Maximum allowed |logit_t - logit_c|
        order: Treated processing order: 'id' (ascending id), 'largest' or
            'smallest' (by logit propensity, ties by id), 'random'
        rng: Random state, required for order='random'

    Returns:
        StratumMatch with pairs in processing order and unmatched ids
    """
    treated = _treated_order(stratum.treated, order, rng)
    controls = stratum.control

    if not treated or not controls:
        return StratumMatch(
            pairs=[],
            unmatched_treated=[s.id for s in stratum.treated],
            unmatched_control=[s.id for s in controls],
        )

    control_logits = np.array([c.logit_propensity for c in controls], dtype=float)
    available_mask = np.ones(len(controls), dtype=bool)

    pairs: List[MatchedPair] = []
    unmatched_treated: List[Any] = []

    for t in treated:
        if not available_mask.any():
            unmatched_treated.append(t.id)
            continue

        t_distances = np.abs(control_logits - t.logit_propensity)
        # Mask out used controls
        t_distances[~available_mask] = np.inf

        # argmin returns the first minimum, i.e. the lowest control id
        c_pos = int(np.argmin(t_distances))
        match_dist = float(t_distances[c_pos])

        if match_dist > threshold:
            unmatched_treated.append(t.id)
            continue

        pairs.append(MatchedPair(
            treated_id=t.id,
            control_id=controls[c_pos].id,
            distance=match_dist,
            stratum=stratum.key,
        ))
        available_mask[c_pos] = False

    unmatched_control = [c.id for c, free in zip(controls, available_mask) if free]

    logger.debug(
        f"Stratum {stratum.key}: {len(pairs)}/{len(treated)} treated matched, "
        f"{len(unmatched_control)} controls unused"
    )
    return StratumMatch(pairs, sorted(unmatched_treated), unmatched_control)


def _treated_order(
    treated: Sequence[Subject], order: str, rng: Optional[np.random.RandomState]
) -> Tuple[Subject, ...]:
    # Input is already sorted by id, and sorted() is stable, so ties keep id order
    if order == "id":
        return tuple(treated)
    if order == "largest":
        return tuple(sorted(treated, key=lambda s: -s.logit_propensity))
    if order == "smallest":
        return tuple(sorted(treated, key=lambda s: s.logit_propensity))
    if order == "random":
        if rng is None:
            raise ValueError("order='random' requires a random state")
        return tuple(treated[i] for i in rng.permutation(len(treated)))
    raise ValueError(f"order must be one of {TREATED_ORDERS}, got {order}")
