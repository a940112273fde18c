"""Strategy descriptor loader — discovers strategies on disk and registers them.

Layout::

    strategies/
        emas_btc/
            strategy.json
        emas_sol/
            strategy.json

Each ``strategy.json`` names its implementation through ``entry`` (or
falls back to the directory name), which must be a key of the strategy
registry.  Invalid candidates are skipped with a logged reason; one bad
directory never aborts the load.
"""

import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Optional

from ethquake.errors import ConfigError, LoadError
from ethquake.models.loaded_strategy import LoadedStrategy, PipelineFn
from ethquake.scheduler import StrategyScheduler
from ethquake.strategy.base import StrategyProtocol
from ethquake.strategy.models import StrategyConfig, parse_strategy_config
from ethquake.strategy.registry import STRATEGY_REGISTRY, StrategyFactory, get_strategy

logger = logging.getLogger("ethquake.loader")

DESCRIPTOR_FILE = "strategy.json"


@dataclass(frozen=True)
class StrategyDescriptor:
    """A validated strategy candidate, ready for warm-up."""

    path: pathlib.Path
    config: StrategyConfig
    strategy: StrategyProtocol


def read_descriptor(folder: pathlib.Path) -> StrategyConfig:
    """Parse and validate ``<folder>/strategy.json``; raises ``ConfigError``."""
    config_path = folder / DESCRIPTOR_FILE
    if not config_path.is_file():
        raise ConfigError(f"No {DESCRIPTOR_FILE} found for strategy {folder.name}")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not read {config_path}: {exc}") from exc
    return parse_strategy_config(data, default_entry=folder.name)


def resolve_entry(
    config: StrategyConfig,
    registry: dict[str, StrategyFactory],
) -> StrategyProtocol:
    """Instantiate and initialise the strategy named by ``config.entry``.

    Raises ``LoadError`` when the entry is unknown, the object it builds
    does not implement ``StrategyProtocol``, or ``initialize()`` fails with
    anything other than ``ConfigError``.
    """
    try:
        strategy = get_strategy(config.entry, config, registry)
    except KeyError as exc:
        raise LoadError(
            f"Strategy {config.name} has no registered entry '{config.entry}'"
        ) from exc
    except Exception as exc:
        raise LoadError(
            f"Strategy {config.name} entry '{config.entry}' failed to construct: {exc}"
        ) from exc

    if not isinstance(strategy, StrategyProtocol):
        raise LoadError(
            f"Strategy {config.name} entry '{config.entry}' does not implement "
            f"initialize()/evaluate()"
        )
    try:
        strategy.initialize()
    except ConfigError:
        raise
    except Exception as exc:
        raise LoadError(
            f"Strategy {config.name} entry '{config.entry}' failed to initialize: {exc}"
        ) from exc
    return strategy


def discover(
    root: pathlib.Path,
    registry: Optional[dict[str, StrategyFactory]] = None,
) -> list[StrategyDescriptor]:
    """Return valid descriptors under *root*, sorted by directory name."""
    registry = STRATEGY_REGISTRY if registry is None else registry
    if not root.is_dir():
        logger.error("Strategies directory %s does not exist", root)
        return []

    folders = sorted(p for p in root.iterdir() if p.is_dir())
    logger.info("Found strategy folders: %s", [f.name for f in folders])

    descriptors: list[StrategyDescriptor] = []
    seen: set[str] = set()
    for folder in folders:
        try:
            config = read_descriptor(folder)
            if config.name in seen:
                raise ConfigError(f"Duplicate strategy name '{config.name}'")
            strategy = resolve_entry(config, registry)
        except ConfigError as exc:
            logger.info("Skipping %s: %s", folder.name, exc)
            continue
        except LoadError as exc:
            logger.warning("Skipping %s: %s", folder.name, exc)
            continue
        except Exception:
            logger.exception("Skipping %s: unexpected error while loading", folder.name)
            continue
        seen.add(config.name)
        descriptors.append(StrategyDescriptor(path=folder, config=config, strategy=strategy))

    return descriptors


async def load_strategies(
    root: pathlib.Path,
    scheduler: StrategyScheduler,
    pipeline: PipelineFn,
    registry: Optional[dict[str, StrategyFactory]] = None,
) -> dict[str, LoadedStrategy]:
    """Discover strategies under *root* and register each with *scheduler*.

    Registration runs the warm-up first, one strategy at a time.  The
    returned mapping holds only strategies that passed validation and
    completed their warm-up.
    """
    logger.info("Loading strategies from: %s", root)
    loaded: dict[str, LoadedStrategy] = {}

    for descriptor in discover(root, registry):
        candidate = LoadedStrategy(
            config=descriptor.config,
            pipeline=pipeline,
            strategy=descriptor.strategy,
        )
        if await scheduler.register(candidate):
            loaded[candidate.name] = candidate
            logger.info("Successfully loaded strategy %s", candidate.name)

    logger.info("Loaded %d strategy(ies): %s", len(loaded), sorted(loaded))
    return loaded
