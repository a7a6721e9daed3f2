"""Built-in stages.

These implement:
- metadata filters (field/reference rules, runs with metadata only)
- document filters (field/reference/content rules, needs the document)
- checksum classification (NEW / MODIFIED / UNMODIFIED)
"""

from __future__ import annotations
from typing import Optional

from ..filters.chain import ChainResult, FilterChain
from ..pipeline.context import DocState, FetchDirective, PipelineContext, StageResult
from .base import Stage


def _filter_result(name: str, chain: Optional[FilterChain], ctx: PipelineContext) -> StageResult:
    if chain is None:
        return StageResult.proceed(name)
    res: ChainResult = chain.evaluate(ctx.record)
    if res.accepted:
        return StageResult.proceed(name)
    if res.rule is None:
        return StageResult.stop(name, DocState.REJECTED, "NO_MATCH", f"no rule matched, no_match={chain.no_match.value}")
    return StageResult.stop(name, DocState.REJECTED, "EXCLUDED", f"rule #{res.rule_index}: {res.rule.describe()}")


class MetadataFiltersStage(Stage):
    name = "metadata_filters"
    layer = "filter"
    requires = FetchDirective.METADATA

    def apply(self, ctx: PipelineContext) -> StageResult:
        return _filter_result(self.name, ctx.metadata_filters, ctx)


class DocumentFiltersStage(Stage):
    name = "document_filters"
    layer = "filter"
    requires = FetchDirective.DOCUMENT

    def apply(self, ctx: PipelineContext) -> StageResult:
        return _filter_result(self.name, ctx.document_filters, ctx)


class ChecksumStage(Stage):
    name = "checksum"
    layer = "change_detection"

    def __init__(self, requires: FetchDirective = FetchDirective.DOCUMENT):
        # content checksums need the document; field checksums can run on metadata alone
        self.requires = requires

    def apply(self, ctx: PipelineContext) -> StageResult:
        if ctx.checksum is None:
            return StageResult.proceed(self.name, DocState.NEW)
        state = ctx.checksum.evaluate(ctx.record)
        if state is DocState.UNMODIFIED:
            return StageResult.stop(self.name, state, "UNMODIFIED", f"checksum={ctx.record.new_checksum}")
        return StageResult.proceed(self.name, state)
