"""Collect mode outputs, separating valid from invalid ones."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.errors import InvalidArgumentError, ParseError
from ensemble_fusion.fusion.audit import DisagreementAuditor
from ensemble_fusion.schema.configs import SynthesisConfig
from ensemble_fusion.schema.context_pack import ContextPack
from ensemble_fusion.schema.normalizer import parse_normalize, validate_mode_output
from ensemble_fusion.schema.outputs import ModeOutput, ValidationIssue
from ensemble_fusion.synthesis.models import SynthesisInput

logger = logging.getLogger(__name__)


class OutputCollectorConfig(BaseModel):
    min_outputs: int = 1
    require_all: bool = False  # raise on the first invalid output


class InvalidOutput(BaseModel):
    mode_id: str
    issues: list[ValidationIssue] = Field(default_factory=lambda: list[ValidationIssue]())


class CollectorStats(BaseModel):
    total_received: int = 0
    valid_count: int = 0
    invalid_count: int = 0


class CollectorResult(BaseModel):
    valid_outputs: list[ModeOutput] = Field(default_factory=lambda: list[ModeOutput]())
    invalid_outputs: list[InvalidOutput] = Field(
        default_factory=lambda: list[InvalidOutput]()
    )
    stats: CollectorStats = Field(default_factory=CollectorStats)
    sufficient: bool = False


class OutputCollector:
    """Accumulates mode outputs ahead of synthesis."""

    def __init__(self, config: OutputCollectorConfig | None = None) -> None:
        self.config = config or OutputCollectorConfig()
        self.outputs: list[ModeOutput] = []
        self.validation_errors: dict[str, list[ValidationIssue]] = {}

    def add(self, output: ModeOutput) -> None:
        """Validate and store *output*; invalid outputs are kept aside.

        Raises ``InvalidArgumentError`` for invalid outputs when
        ``require_all`` is set.
        """
        issues = validate_mode_output(output)
        if not issues:
            self.outputs.append(output)
            return

        key = output.mode_id or f"unknown-{len(self.validation_errors) + 1}"
        if self.config.require_all:
            msg = f"invalid output from {key}: " + "; ".join(str(i) for i in issues)
            raise InvalidArgumentError(msg)
        self.validation_errors[key] = issues
        logger.warning("event=output_rejected mode=%s issues=%d", key, len(issues))

    def add_raw(self, mode_id: str, raw: str) -> None:
        """Parse an agent reply; parse failures are recorded, not raised."""
        try:
            output, _ = parse_normalize(raw, mode_id)
        except ParseError as exc:
            if self.config.require_all:
                raise
            self.validation_errors[mode_id] = [
                ValidationIssue(field="raw_output", message=str(exc))
            ]
            logger.warning("event=output_parse_failed mode=%s error=%s", mode_id, exc)
            return
        self.add(output)

    def count(self) -> int:
        return len(self.outputs)

    def error_count(self) -> int:
        return len(self.validation_errors)

    def has_enough(self) -> bool:
        return len(self.outputs) >= max(self.config.min_outputs, 1)

    def reset(self) -> None:
        self.outputs = []
        self.validation_errors = {}

    def collect(self) -> CollectorResult:
        invalid = [
            InvalidOutput(mode_id=mode_id, issues=issues)
            for mode_id, issues in self.validation_errors.items()
        ]
        return CollectorResult(
            valid_outputs=list(self.outputs),
            invalid_outputs=invalid,
            stats=CollectorStats(
                total_received=len(self.outputs) + len(invalid),
                valid_count=len(self.outputs),
                invalid_count=len(invalid),
            ),
            sufficient=self.has_enough(),
        )

    def build_synthesis_input(
        self,
        question: str,
        pack: ContextPack | None,
        config: SynthesisConfig | None = None,
    ) -> SynthesisInput:
        """Bundle the valid outputs with an audit of their disagreements.

        Raises ``InvalidArgumentError`` when too few valid outputs exist.
        """
        if not self.outputs:
            msg = "no valid outputs collected"
            raise InvalidArgumentError(msg)
        if not self.has_enough():
            msg = (
                f"insufficient outputs: have {len(self.outputs)}, "
                f"need {self.config.min_outputs}"
            )
            raise InvalidArgumentError(msg)

        outputs = list(self.outputs)
        return SynthesisInput(
            outputs=outputs,
            original_question=question,
            context_pack=pack,
            config=config,
            audit_report=DisagreementAuditor(outputs).audit(),
        )
