"""Strategy registry — maps descriptor entry keys to strategy factories.

Used by the loader to instantiate the strategy named by a descriptor's
``entry`` (or its directory name).
"""

from typing import Callable

from ethquake.strategy.base import StrategyProtocol
from ethquake.strategy.ema_crossover import EmaCrossoverStrategy
from ethquake.strategy.models import StrategyConfig

StrategyFactory = Callable[[StrategyConfig], StrategyProtocol]


STRATEGY_REGISTRY: dict[str, StrategyFactory] = {
    "ema_crossover": EmaCrossoverStrategy,
    "emas": EmaCrossoverStrategy,
}


def register_strategy(
    key: str,
    factory: StrategyFactory,
    registry: dict[str, StrategyFactory] = STRATEGY_REGISTRY,
) -> None:
    """Add *factory* under *key*; ``ValueError`` if the key is taken."""
    if key in registry:
        raise ValueError(f"Strategy '{key}' is already registered")
    registry[key] = factory


def get_strategy(
    key: str,
    config: StrategyConfig,
    registry: dict[str, StrategyFactory] = STRATEGY_REGISTRY,
) -> StrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Raises ``KeyError`` if the key is not registered.
    """
    if key not in registry:
        raise KeyError(
            f"Unknown strategy '{key}'. "
            f"Available: {', '.join(registry.keys())}"
        )
    return registry[key](config)
