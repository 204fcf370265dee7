"""Registry-based factory for blocker instantiation.

New blocker types are added by extending ``BLOCKER_REGISTRY``; no
``match``/``case`` cascade to maintain.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from recolink.candidates.blockers import (
    Blocker,
    FieldExactBlocker,
    IdentifierPrefixBlocker,
    MinHashLSHNameBlocker,
    NameTokenBlocker,
)
from recolink.errors import ConfigurationError

# type → callable that returns a Blocker
BLOCKER_REGISTRY: dict[str, type] = {
    "field_exact": FieldExactBlocker,
    "identifier_prefix": IdentifierPrefixBlocker,
    "name_token": NameTokenBlocker,
    "minhash_name": MinHashLSHNameBlocker,
}


@dataclass(frozen=True)
class BlockerConfig:
    """Declarative configuration for a single blocker.

    Attributes
    ----------
    type : str
        Key in ``BLOCKER_REGISTRY``.
    enabled : bool
        Disabled configs are silently skipped by ``create_blockers``.
    params : dict[str, Any]
        Keyword arguments forwarded to the blocker constructor.
    """

    type: str
    enabled: bool = True
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, spec: str | Mapping[str, Any] | BlockerConfig) -> BlockerConfig:
        """Accept ``"type"``, ``"type:field"`` or a mapping.

        Examples
        --------
        >>> BlockerConfig.parse("field_exact:id")
        BlockerConfig(type='field_exact', enabled=True, params={'field': 'id'})
        """
        if isinstance(spec, BlockerConfig):
            return spec
        if isinstance(spec, str):
            kind, _, field_name = spec.partition(":")
            params = {"field": field_name} if field_name else {}
            return cls(type=kind, params=params)
        return cls(
            type=spec["type"],
            enabled=spec.get("enabled", True),
            params=dict(spec.get("params", {})),
        )


def create_blocker(config: BlockerConfig) -> Blocker:
    """Instantiate a single blocker from *config*.

    Parameters
    ----------
    config : BlockerConfig
        Blocker specification.

    Returns
    -------
    Blocker
        Ready-to-use blocker instance.

    Raises
    ------
    ConfigurationError
        If ``config.type`` is not in the registry or its params are rejected.
    """
    cls = BLOCKER_REGISTRY.get(config.type)
    if cls is None:
        valid = ", ".join(sorted(BLOCKER_REGISTRY))
        raise ConfigurationError(f"Unknown blocker type: {config.type!r}. Valid types: {valid}")
    try:
        return cls(**config.params)  # type: ignore[no-any-return]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid params for blocker {config.type!r}: {e}") from e


def create_blockers(configs: list[BlockerConfig]) -> list[Blocker]:
    """Instantiate all *enabled* blockers from a config list."""
    return [create_blocker(cfg) for cfg in configs if cfg.enabled]
