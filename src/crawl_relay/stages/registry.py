"""Stage registry.

Stages are configured by name in the crawl YAML (`pipeline.stages`); the
default order is metadata filters -> document filters -> checksum.
"""

from __future__ import annotations
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import ConfigurationError
from ..pipeline.context import FetchDirective
from .base import Stage
from .impl import ChecksumStage, DocumentFiltersStage, MetadataFiltersStage

DEFAULT_STAGES = ("metadata_filters", "document_filters", "checksum")

_FACTORIES: Dict[str, Callable[..., Stage]] = {
    "metadata_filters": lambda **_: MetadataFiltersStage(),
    "document_filters": lambda **_: DocumentFiltersStage(),
    "checksum": lambda checksum_needs_content=True, **_: ChecksumStage(
        FetchDirective.DOCUMENT if checksum_needs_content else FetchDirective.METADATA
    ),
}

def register_stage(name: str, factory: Callable[..., Stage]) -> None:
    """Register an additional stage factory; factories receive keyword options."""
    if name in _FACTORIES:
        raise ValueError(f"Stage '{name}' already registered")
    _FACTORIES[name] = factory

def list_stages() -> List[str]:
    return list(_FACTORIES)

def make_stages(stage_names: Optional[Sequence[str]] = None, *, checksum_needs_content: bool = True) -> List[Stage]:
    """Create stages in the given order."""
    names = list(stage_names) if stage_names else list(DEFAULT_STAGES)
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate stage names in {names}")
    stages = []
    for n in names:
        if n not in _FACTORIES:
            raise ConfigurationError(f"Unknown stage: {n}. Register it in crawl_relay.stages.registry")
        stages.append(_FACTORIES[n](checksum_needs_content=checksum_needs_content))
    return stages
