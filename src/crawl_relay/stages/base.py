"""Stage plugin interface.

Stages must:
- accept a PipelineContext
- return a StageResult (continue/stop + the state they decided, if any)
- touch only the context's record, never shared configuration

A stage declares the fetch directive it needs. When the run only has metadata,
stages needing the document are skipped by the runner.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from ..pipeline.context import FetchDirective, PipelineContext, StageResult

class Stage(ABC):
    name: str = "stage"
    layer: str = "evaluation"
    requires: FetchDirective = FetchDirective.METADATA

    @abstractmethod
    def apply(self, ctx: PipelineContext) -> StageResult:
        ...
