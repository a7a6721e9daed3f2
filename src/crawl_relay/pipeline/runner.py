"""Pipeline runner.

Runs the ordered stage list against one PipelineContext:
- each stage returns a StageResult; STOP short-circuits the remaining stages
- REJECTED/ERROR are sticky: no later result can turn them back into an accepting state
- a StageError (or any unexpected exception) inside a stage marks the record ERROR;
  one bad document never aborts the crawl
- DELETED records bypass every stage
- a record no stage classified is NEW only when the checksum store has no prior
  signature for it, MODIFIED otherwise
"""

from __future__ import annotations
from typing import List, Optional, Sequence
import logging

from ..errors import StageError
from .context import DocState, PipelineContext, StageResult
from ..stages.base import Stage

log = logging.getLogger("crawl_relay.pipeline.runner")


class PipelineRunner:
    def __init__(self, stages: Sequence[Stage]):
        self.stages: tuple = tuple(stages)

    @property
    def stage_names(self) -> List[str]:
        return [st.name for st in self.stages]

    def run(self, ctx: PipelineContext) -> DocState:
        record = ctx.record
        if record.deleted:
            self._set_state(ctx, StageResult.stop("deletion", DocState.DELETED, "DELETED"))
            return record.state

        for st in self.stages:
            if not ctx.supports(st.requires):
                log.debug("Skipping stage %s for %s (fetch directive=%s)", st.name, record.reference, ctx.fetch_directive.value)
                continue
            result = self._apply(st, ctx)
            ctx.trail.append(result)
            self._set_state(ctx, result)
            if result.stopped or (record.state is not None and record.state.is_rejecting):
                break

        if record.state is None:
            record.state = self._unclassified_state(ctx)
        return record.state

    @staticmethod
    def _unclassified_state(ctx: PipelineContext) -> DocState:
        """State for a record no stage classified (e.g. checksum skipped for lack of content).

        Without a signature a change cannot be ruled out: NEW when the store has
        no prior signature, MODIFIED otherwise.
        """
        if ctx.checksum is None:
            return DocState.NEW
        record = ctx.record
        record.prior_checksum = ctx.checksum.store.get(record.reference)
        return ctx.checksum.classify(record.reference, None)

    def _apply(self, st: Stage, ctx: PipelineContext) -> StageResult:
        try:
            result = st.apply(ctx)
        except StageError as e:
            log.warning("Stage %s failed for %s: %s", st.name, ctx.record.reference, e)
            return StageResult.stop(st.name, DocState.ERROR, e.reason_code, str(e))
        except Exception as e:
            log.exception("Unhandled error in stage %s for %s", st.name, ctx.record.reference)
            return StageResult.stop(st.name, DocState.ERROR, "RUNTIME_ERROR", f"{type(e).__name__}: {e}")
        if result is None:
            raise TypeError(f"Stage {st.name} returned None; stages must return a StageResult")
        return result

    @staticmethod
    def _set_state(ctx: PipelineContext, result: StageResult) -> None:
        record = ctx.record
        new_state: Optional[DocState] = result.state
        if new_state is None:
            return
        if record.state is not None and record.state.is_rejecting:
            log.debug("Ignoring %s -> %s for %s: rejecting state is final", record.state.value, new_state.value, record.reference)
            return
        record.state = new_state
        if result.reason_code:
            record.reason_stage = result.stage
            record.reason_code = result.reason_code
            record.reason_detail = result.reason_detail
