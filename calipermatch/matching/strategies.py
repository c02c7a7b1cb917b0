"""
Registry of matching strategies.

A strategy matches one stratum: it is called as
``func(stratum, threshold, rng) -> StratumMatch`` and must only use controls
of that stratum, each at most once.
"""

import functools
from typing import Callable, Dict, List, Optional

import numpy as np

from calipermatch.datatypes import Stratum
from calipermatch.matching.greedy import StratumMatch, greedy_match_stratum

StrategyFunc = Callable[[Stratum, float, Optional[np.random.RandomState]], StratumMatch]

_STRATEGIES: Dict[str, StrategyFunc] = {}


def register_strategy(name: str, func: StrategyFunc, overwrite: bool = False) -> None:
    """Register a matching strategy under a name usable in MatcherConfig.strategy."""
    if name in _STRATEGIES and not overwrite:
        raise ValueError(f"Strategy '{name}' is already registered")
    _STRATEGIES[name] = func


def get_strategy(name: str) -> StrategyFunc:
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown matching strategy '{name}', available: {available_strategies()}"
        ) from None


def available_strategies() -> List[str]:
    return sorted(_STRATEGIES)


def _greedy(order: str) -> StrategyFunc:
    @functools.wraps(greedy_match_stratum)
    def strategy(stratum, threshold, rng=None):
        return greedy_match_stratum(stratum, threshold, order=order, rng=rng)
    return strategy


register_strategy("greedy", _greedy("id"))
register_strategy("greedy_largest", _greedy("largest"))
register_strategy("greedy_smallest", _greedy("smallest"))
register_strategy("greedy_random", _greedy("random"))
