"""Synthesizer: mechanical fusion, streaming emit and agent-reply parsing.

``synthesize`` runs the mechanical merge for every strategy; agent
strategies additionally get a prompt from ``generate_prompt`` that the
orchestrator hands to a synthesizer agent. ``stream`` runs the same
synthesis as a bounded producer and emits chunks in a fixed order:
started, merged, findings, risks, recommendations, questions,
explanation, complete.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from ensemble_fusion.constants import STREAM_BUFFER_SIZE, ChunkType, ImpactLevel, StrategyName
from ensemble_fusion.errors import InvalidArgumentError, ParseError
from ensemble_fusion.fusion.audit import AuditReport
from ensemble_fusion.fusion.merge import (
    average_confidence,
    consolidate_theses,
    merge_outputs_with_provenance,
)
from ensemble_fusion.schema.configs import MergeConfig, SynthesisConfig
from ensemble_fusion.schema.context_pack import ContextPack
from ensemble_fusion.schema.normalizer import strip_fenced_block
from ensemble_fusion.schema.outputs import (
    Finding,
    ModeOutput,
    Recommendation,
    Risk,
    ValidationIssue,
    is_valid_confidence,
    is_valid_impact,
)
from ensemble_fusion.synthesis.collector import OutputCollector, OutputCollectorConfig
from ensemble_fusion.synthesis.contributions import (
    ContributionTracker,
    track_contributions_from_merge,
    track_original_findings,
)
from ensemble_fusion.synthesis.explanation import (
    ExplanationTracker,
    build_explanation_from_conflicts,
    build_explanation_from_merge,
    format_explanation,
)
from ensemble_fusion.synthesis.models import SynthesisChunk, SynthesisInput, SynthesisResult
from ensemble_fusion.synthesis.strategies import StrategyConfig, get_strategy

logger = logging.getLogger(__name__)

_MISSING_MESSAGE = "required field is missing"
_RANGE_MESSAGE = "must be between 0.0 and 1.0"
_IMPACT_MESSAGE = "must be one of: critical, high, medium, low"

SYNTHESIZER_PROMPT_TEMPLATE = """\
You are the SYNTHESIZER for a reasoning ensemble.

Your role: Combine outputs from multiple reasoning modes into a cohesive, high-quality synthesis.

## Original Question
{question}

## Synthesis Strategy: {strategy}
{strategy_description}

## Mode Outputs
{mode_outputs}

## Disagreement Analysis
{audit_summary}

## Constraints
- Maximum findings to include: {max_findings}
- Minimum confidence threshold: {min_confidence:.2f}

## Your Task
1. Read all mode outputs carefully
2. Identify key agreements and disagreements
3. Synthesize a unified analysis that:
   - Highlights the strongest findings (supported by multiple modes)
   - Notes significant disagreements and how to resolve them
   - Ranks risks and recommendations by importance
   - Maintains appropriate confidence levels
4. Generate output in the required schema format

## Output Format
{output_schema}
"""


# ── streaming ────────────────────────────────────────────


@dataclass
class SynthesisStream:
    """Handle on a running synthesis producer.

    ``chunks`` is bounded; the producer suspends when it is full.
    ``errors`` holds at most one exception once the producer stops early.
    ``last_index`` is the index of the last chunk handed to the consumer,
    the watermark to persist for a later resume.
    """

    chunks: asyncio.Queue[SynthesisChunk]
    errors: asyncio.Queue[BaseException]
    task: asyncio.Task[None]
    last_index: int = 0

    async def __aiter__(self) -> AsyncIterator[SynthesisChunk]:
        while True:
            if self.chunks.empty() and self.task.done():
                return
            getter = asyncio.ensure_future(self.chunks.get())
            done, _ = await asyncio.wait(
                {getter, self.task}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter in done:
                yield self._delivered(getter.result())
                continue
            getter.cancel()
            while not self.chunks.empty():
                yield self._delivered(self.chunks.get_nowait())
            return

    def _delivered(self, chunk: SynthesisChunk) -> SynthesisChunk:
        self.last_index = chunk.index
        return chunk

    def error(self) -> BaseException | None:
        """The producer's error, if it has stopped with one."""
        if self.errors.empty():
            return None
        err = self.errors.get_nowait()
        self.errors.put_nowait(err)
        return err

    async def collect(self) -> tuple[list[SynthesisChunk], BaseException | None]:
        """Drain the stream; returns the chunks and any producer error."""
        received = [chunk async for chunk in self]
        await self.task
        return received, self.error()


class _Emitter:
    def __init__(
        self,
        chunks: asyncio.Queue[SynthesisChunk],
        cancel: asyncio.Event | None,
        resume_after: int = 0,
    ) -> None:
        self.chunks = chunks
        self.cancel = cancel
        self.resume_after = resume_after
        self.index = 0

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def emit(self, chunk_type: ChunkType, content: str) -> bool:
        """Send one chunk; False when cancellation won the race."""
        if self.cancelled():
            return False
        self.index += 1
        if self.index <= self.resume_after:
            # already delivered before the resume
            return True
        chunk = SynthesisChunk(type=chunk_type, content=content, index=self.index)
        if self.cancel is None:
            await self.chunks.put(chunk)
            return True

        putter = asyncio.ensure_future(self.chunks.put(chunk))
        waiter = asyncio.ensure_future(self.cancel.wait())
        done, _ = await asyncio.wait(
            {putter, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        waiter.cancel()
        if putter in done:
            return True
        putter.cancel()
        return False


# ── synthesizer ──────────────────────────────────────────


class Synthesizer:
    """Strategy-driven synthesis of mode outputs."""

    def __init__(
        self,
        config: SynthesisConfig | None = None,
        merge_config: MergeConfig | None = None,
    ) -> None:
        self.config = config or SynthesisConfig()
        self.strategy: StrategyConfig = get_strategy(
            self.config.strategy or StrategyName.MANUAL
        )
        self.merge_config = merge_config or MergeConfig()

    def config_for(self, synthesis_input: SynthesisInput) -> SynthesisConfig:
        """Per-input config when one was attached, else the synthesizer's own."""
        return synthesis_input.config or self.config

    def strategy_for(self, config: SynthesisConfig) -> StrategyConfig:
        if config is self.config or not config.strategy:
            return self.strategy
        return get_strategy(config.strategy)

    def effective_merge_config(self, config: SynthesisConfig | None = None) -> MergeConfig:
        """Merge config with positive synthesis limits applied on top."""
        cfg = config or self.config
        updates: dict[str, Any] = {}
        if cfg.max_findings > 0:
            updates["max_findings"] = cfg.max_findings
        if cfg.min_confidence > 0:
            updates["min_confidence"] = cfg.min_confidence
        return self.merge_config.model_copy(update=updates)

    def synthesize(self, synthesis_input: SynthesisInput) -> SynthesisResult:
        """Merge the outputs mechanically.

        Agent strategies use the same path; the agent prompt comes from
        ``generate_prompt``. Raises ``InvalidArgumentError`` when there
        is nothing to synthesize.
        """
        if not synthesis_input.outputs:
            msg = "no outputs to synthesize"
            raise InvalidArgumentError(msg)
        return self._mechanical_synthesize(synthesis_input)

    def _mechanical_synthesize(self, synthesis_input: SynthesisInput) -> SynthesisResult:
        outputs = synthesis_input.outputs
        provenance = synthesis_input.provenance
        config = self.config_for(synthesis_input)
        strategy = self.strategy_for(config)

        contributions = ContributionTracker()
        track_original_findings(contributions, outputs)

        merged = merge_outputs_with_provenance(
            outputs, self.effective_merge_config(config), provenance
        )
        track_contributions_from_merge(contributions, merged)

        result = SynthesisResult(
            summary=consolidate_theses(outputs),
            findings=[mf.finding for mf in merged.findings],
            risks=[mr.risk for mr in merged.risks],
            recommendations=[mr.recommendation for mr in merged.recommendations],
            questions_for_user=merged.questions,
            confidence=average_confidence(outputs),
        )

        if provenance is not None:
            for i, mf in enumerate(merged.findings):
                if not mf.provenance_id:
                    continue
                provenance.record_synthesis_citation(mf.provenance_id, f"findings[{i}]")
                for mode in mf.source_modes:
                    contributions.record_citation(mode)

        if config.include_explanation:
            explanation = ExplanationTracker(provenance)
            build_explanation_from_merge(explanation, merged, strategy)
            build_explanation_from_conflicts(explanation, synthesis_input.audit_report)
            result.explanation = explanation.generate_layer()

        result.contributions = contributions.generate_report()
        logger.info(
            "event=synthesis_complete strategy=%s modes=%d findings=%d risks=%d recs=%d",
            strategy.name,
            len(outputs),
            len(result.findings),
            len(result.risks),
            len(result.recommendations),
        )
        return result

    def stream(
        self,
        synthesis_input: SynthesisInput,
        cancel: asyncio.Event | None = None,
        *,
        buffer_size: int = STREAM_BUFFER_SIZE,
        resume_after: int = 0,
    ) -> SynthesisStream:
        """Start a producer task; must be called from a running event loop.

        Setting *cancel* stops the producer before its next send and puts
        ``asyncio.CancelledError`` on the errors queue. Chunks already
        emitted stay emitted.

        *resume_after* is a saved ``last_emitted_index``: chunks up to and
        including it are skipped and the rest keep their original indices.
        """
        chunks: asyncio.Queue[SynthesisChunk] = asyncio.Queue(maxsize=max(buffer_size, 1))
        errors: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=1)
        resume_after = max(resume_after, 0)
        if resume_after:
            logger.info("event=synthesis_stream_resumed after_index=%d", resume_after)
        task = asyncio.create_task(
            self._produce(synthesis_input, chunks, errors, cancel, resume_after)
        )
        return SynthesisStream(chunks=chunks, errors=errors, task=task, last_index=resume_after)

    async def _produce(
        self,
        synthesis_input: SynthesisInput,
        chunks: asyncio.Queue[SynthesisChunk],
        errors: asyncio.Queue[BaseException],
        cancel: asyncio.Event | None,
        resume_after: int = 0,
    ) -> None:
        emitter = _Emitter(chunks, cancel, resume_after)

        def stop_cancelled() -> None:
            logger.info("event=synthesis_stream_cancelled emitted=%d", emitter.index)
            errors.put_nowait(asyncio.CancelledError("synthesis stream canceled"))

        if emitter.cancelled():
            stop_cancelled()
            return
        if not synthesis_input.outputs:
            errors.put_nowait(InvalidArgumentError("no outputs to synthesize"))
            return

        if not await emitter.emit(ChunkType.STATUS, "synthesis started"):
            stop_cancelled()
            return

        try:
            result = self.synthesize(synthesis_input)
        except Exception as exc:
            logger.warning("event=synthesis_stream_failed error=%s", exc)
            errors.put_nowait(exc)
            return

        if not await emitter.emit(ChunkType.STATUS, "synthesis merged"):
            stop_cancelled()
            return

        sequence: list[tuple[ChunkType, str]] = []
        sequence += [(ChunkType.FINDING, f.finding) for f in result.findings]
        sequence += [(ChunkType.RISK, r.risk) for r in result.risks]
        sequence += [
            (ChunkType.RECOMMENDATION, r.recommendation) for r in result.recommendations
        ]
        sequence += [(ChunkType.QUESTION, q.question) for q in result.questions_for_user]
        if result.explanation is not None:
            sequence.append((ChunkType.EXPLANATION, format_explanation(result.explanation)))
        sequence.append((ChunkType.COMPLETE, result.summary))

        for chunk_type, content in sequence:
            if not await emitter.emit(chunk_type, content):
                stop_cancelled()
                return

    # ── agent prompt ─────────────────────────────────────

    def generate_prompt(self, synthesis_input: SynthesisInput) -> str:
        """Prompt for a synthesizer agent (agent strategies)."""
        config = self.config_for(synthesis_input)
        strategy = self.strategy_for(config)
        return SYNTHESIZER_PROMPT_TEMPLATE.format(
            question=synthesis_input.original_question,
            strategy=strategy.name,
            strategy_description=strategy.description,
            mode_outputs=format_mode_outputs(synthesis_input.outputs),
            audit_summary=format_audit_summary(synthesis_input.audit_report),
            max_findings=config.max_findings,
            min_confidence=config.min_confidence,
            output_schema=synthesis_schema_json(),
        )


def format_mode_outputs(outputs: list[ModeOutput]) -> str:
    """Compact JSON of the fields a synthesizer agent needs."""
    if not outputs:
        return "[]"
    compact: list[dict[str, Any]] = []
    for o in outputs:
        entry: dict[str, Any] = {
            "mode_id": o.mode_id,
            "thesis": o.thesis,
            "top_findings": [f.model_dump(mode="json") for f in o.top_findings],
        }
        if o.risks:
            entry["risks"] = [r.model_dump(mode="json") for r in o.risks]
        entry["confidence"] = o.confidence
        compact.append(entry)
    return json.dumps(compact, indent=2)


def format_audit_summary(report: AuditReport | None) -> str:
    if report is None:
        return "No disagreement analysis available."
    if not report.conflicts:
        return "No significant disagreements detected."

    lines = [f"Detected {len(report.conflicts)} areas of disagreement:"]
    for i, c in enumerate(report.conflicts, start=1):
        lines.append(f"{i}. {c.topic} (severity: {c.severity})")
    if report.resolution_suggestions:
        lines.append("")
        lines.append("Suggested resolutions:")
        lines.extend(f"- {s}" for s in report.resolution_suggestions)
    return "\n".join(lines) + "\n"


def synthesis_schema_json() -> str:
    sample = SynthesisResult(
        summary="A unified thesis synthesizing key insights from all reasoning modes.",
        findings=[
            Finding(
                finding="Key finding supported by multiple modes",
                impact=ImpactLevel.HIGH,
                confidence=0.85,
                evidence_pointer="src/app/service.py:42",
                reasoning="Supported by modes: deductive, systems-thinking",
            )
        ],
        risks=[
            Risk(
                risk="Primary risk identified across modes",
                impact=ImpactLevel.HIGH,
                likelihood=0.8,
                mitigation="Suggested mitigation approach",
            )
        ],
        recommendations=[
            Recommendation(
                recommendation="Top recommendation based on synthesis",
                priority=ImpactLevel.HIGH,
                rationale="Why this is the top priority",
            )
        ],
        confidence=0.8,
    )
    payload = sample.model_dump(
        mode="json",
        exclude={"explanation", "contributions", "raw_output", "generated_at"},
    )
    return json.dumps(payload, indent=2)


# ── agent reply parsing ──────────────────────────────────


def extract_synthesis_content(raw: str) -> str:
    """Body of a fenced block, else text from the ``summary`` key onward."""
    content = strip_fenced_block(raw)
    if content is not raw:
        return content
    lines = raw.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("summary:") or stripped.startswith('"summary"'):
            return "\n".join(lines[i:])
    return raw


def parse_synthesis_output(raw: str) -> SynthesisResult:
    """Decode a synthesizer agent's reply (JSON first, then YAML).

    Raises ``ParseError`` when neither decoder yields a usable mapping.
    """
    if not raw.strip():
        msg = "empty synthesis output"
        raise ParseError(msg)

    content = extract_synthesis_content(raw)
    try:
        doc: Any = json.loads(content)
    except json.JSONDecodeError:
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            msg = "failed to parse synthesis output as JSON or YAML"
            raise ParseError(msg) from exc

    if not isinstance(doc, dict):
        msg = "failed to parse synthesis output as JSON or YAML"
        raise ParseError(msg)

    doc.pop("generated_at", None)
    try:
        result = SynthesisResult.model_validate(doc)
    except PydanticValidationError as exc:
        msg = f"invalid synthesis output: {exc.errors()[0]['msg']}"
        raise ParseError(msg) from exc
    result.raw_output = raw
    return result


def validate_synthesis_result(result: SynthesisResult) -> list[ValidationIssue]:
    """Non-fatal field checks on a parsed synthesis."""
    issues: list[ValidationIssue] = []
    if not result.summary.strip():
        issues.append(ValidationIssue(field="summary", message=_MISSING_MESSAGE))
    if not is_valid_confidence(result.confidence):
        issues.append(
            ValidationIssue(field="confidence", message=_RANGE_MESSAGE, value=result.confidence)
        )

    for i, f in enumerate(result.findings):
        prefix = f"findings[{i}]"
        if not f.finding.strip():
            issues.append(ValidationIssue(field=f"{prefix}.finding", message=_MISSING_MESSAGE))
        if f.impact and not is_valid_impact(f.impact):
            issues.append(
                ValidationIssue(field=f"{prefix}.impact", message=_IMPACT_MESSAGE, value=f.impact)
            )
        if not is_valid_confidence(f.confidence):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.confidence", message=_RANGE_MESSAGE, value=f.confidence
                )
            )

    for i, r in enumerate(result.risks):
        if not r.risk.strip():
            issues.append(ValidationIssue(field=f"risks[{i}].risk", message=_MISSING_MESSAGE))

    for i, rec in enumerate(result.recommendations):
        if not rec.recommendation.strip():
            issues.append(
                ValidationIssue(
                    field=f"recommendations[{i}].recommendation", message=_MISSING_MESSAGE
                )
            )
    return issues


def parse_and_validate_synthesis_output(
    raw: str,
) -> tuple[SynthesisResult, list[ValidationIssue]]:
    result = parse_synthesis_output(raw)
    return result, validate_synthesis_result(result)


# ── pipeline ─────────────────────────────────────────────


class SynthesisEngine:
    """Collector plus synthesizer: the full post-dispatch pipeline."""

    def __init__(
        self,
        config: SynthesisConfig | None = None,
        collector_config: OutputCollectorConfig | None = None,
    ) -> None:
        self.synthesizer = Synthesizer(config)
        self.collector = OutputCollector(collector_config)

    def add_output(self, output: ModeOutput) -> None:
        self.collector.add(output)

    def process(
        self, question: str, pack: ContextPack | None = None
    ) -> tuple[SynthesisResult, AuditReport | None]:
        """Build the synthesis input from collected outputs and synthesize."""
        synthesis_input = self.collector.build_synthesis_input(
            question, pack, self.synthesizer.config
        )
        return self.synthesizer.synthesize(synthesis_input), synthesis_input.audit_report
