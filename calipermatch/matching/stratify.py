"""
Exact-match stratification.

Partitions subjects into strata sharing identical values on the configured
exact-match covariates. Matching later happens only within a stratum.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from calipermatch.datatypes import Stratum, Subject
from calipermatch.exceptions import MissingKeyError
from calipermatch.subjects import SubjectTable
from calipermatch.utils.logging import get_logger

logger = get_logger(__name__)


def stratify(
    subjects: Iterable[Subject],
    exact_keys: Sequence[str],
) -> Dict[Tuple[Any, ...], Stratum]:
    """Partition subjects into strata by their exact-match key values.

    The stratum key of a subject is its ``exact_keys`` tuple; ``exact_keys``
    here names those positions. A SubjectTable must be stratified on the keys
    it was loaded with. Within each stratum treated and control subjects are
    sorted by ascending id, so the result does not depend on input order.
    Strata with no treated or no control members are kept.

    Args:
        subjects: Subjects to partition, usually a SubjectTable
        exact_keys: Names of the exact-match covariates; empty puts every
            subject in a single stratum with key ()

    Returns:
        Mapping from key tuple to Stratum, ordered by stratum_sort_key

    Raises:
        ValueError: If the names differ from a table's exact-match keys, or a
            subject carries a different number of key values
        MissingKeyError: If a subject has no value for one of the keys
    """
    exact_keys = tuple(exact_keys)
    if isinstance(subjects, SubjectTable) and subjects.exact_key_names != exact_keys:
        raise ValueError(
            f"Cannot stratify on {list(exact_keys)}: the subject table was loaded "
            f"with exact-match keys {list(subjects.exact_key_names)}"
        )

    treated: Dict[Tuple[Any, ...], List[Subject]] = defaultdict(list)
    control: Dict[Tuple[Any, ...], List[Subject]] = defaultdict(list)

    for subject in subjects:
        key = stratum_key(subject, exact_keys)
        (treated if subject.treatment else control)[key].append(subject)

    strata = {}
    for key in sorted(set(treated) | set(control), key=stratum_sort_key):
        strata[key] = Stratum(
            key=key,
            treated=tuple(sorted(treated.get(key, ()), key=lambda s: s.id)),
            control=tuple(sorted(control.get(key, ()), key=lambda s: s.id)),
        )

    logger.info(f"Stratified subjects on {list(exact_keys)} into {len(strata)} strata")
    for key, stratum in strata.items():
        logger.debug(
            f"Stratum {key}: {len(stratum.treated)} treated, {len(stratum.control)} control"
        )
    return strata


def stratum_key(subject: Subject, exact_keys: Sequence[str]) -> Tuple[Any, ...]:
    """Key tuple of a subject, checked against the exact-match key names."""
    values = subject.exact_keys
    if len(values) != len(exact_keys):
        raise ValueError(
            f"Subject {subject.id!r} has {len(values)} exact-key values, "
            f"expected {len(exact_keys)} for {list(exact_keys)}"
        )
    for name, value in zip(exact_keys, values):
        if value is None or value != value:  # NaN
            raise MissingKeyError(subject.id, name)
    return values


def stratum_sort_key(key: Tuple[Any, ...]) -> Tuple[str, ...]:
    """Deterministic ordering of stratum keys with possibly mixed value types."""
    return tuple(f"{type(v).__name__}:{v}" for v in key)
