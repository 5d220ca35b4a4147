"""Findings velocity: unique findings per 1k tokens, per mode and overall."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.fusion.similarity import finding_key
from ensemble_fusion.schema.outputs import Finding, ModeOutput

logger = logging.getLogger(__name__)

LOW_VELOCITY_THRESHOLD = 1.0  # findings per 1k tokens


class VelocityEntry(BaseModel):
    mode_id: str
    mode_name: str = ""
    tokens_spent: int = 0
    findings_count: int = 0
    unique_findings: int = 0
    velocity: float = 0.0  # unique findings per 1k tokens

    @property
    def display_name(self) -> str:
        return self.mode_name or self.mode_id


class VelocityReport(BaseModel):
    overall: float = 0.0
    distinct_findings: int = 0
    per_mode: list[VelocityEntry] = Field(default_factory=lambda: list[VelocityEntry]())
    high_performers: list[str] = Field(default_factory=lambda: list[str]())
    low_performers: list[str] = Field(default_factory=lambda: list[str]())
    suggestions: list[str] = Field(default_factory=lambda: list[str]())


def unique_finding_keys(findings: list[Finding]) -> set[str]:
    return {finding_key(f) for f in findings if f.finding.strip()}


def average_velocity(entries: list[VelocityEntry]) -> float:
    """Mean velocity over entries that reported tokens."""
    counted = [e.velocity for e in entries if e.tokens_spent > 0]
    return sum(counted) / len(counted) if counted else 0.0


def velocity_label(value: float, average: float) -> str:
    if value > average:
        return "HIGH"
    if value < LOW_VELOCITY_THRESHOLD:
        return "LOW"
    return ""


class VelocityTracker:
    def __init__(self) -> None:
        self.entries: list[VelocityEntry] = []
        self._distinct: set[str] = set()

    def record_output(
        self, output: ModeOutput, tokens: int, mode_id: str = "", mode_name: str = ""
    ) -> VelocityEntry:
        mode_id = mode_id or output.mode_id
        tokens = max(tokens, 0)
        keys = unique_finding_keys(output.top_findings)
        self._distinct |= keys

        velocity = 0.0
        if tokens > 0:
            velocity = len(keys) / tokens * 1000
        else:
            logger.warning("event=velocity_tokens_missing mode=%s tokens=%d", mode_id, tokens)

        entry = VelocityEntry(
            mode_id=mode_id,
            mode_name=mode_name,
            tokens_spent=tokens,
            findings_count=len(output.top_findings),
            unique_findings=len(keys),
            velocity=velocity,
        )
        self.entries.append(entry)
        logger.debug(
            "event=velocity_recorded mode=%s tokens=%d unique=%d velocity=%.2f",
            mode_id,
            tokens,
            len(keys),
            velocity,
        )
        return entry

    def calculate_velocity(self) -> VelocityReport:
        """Overall = sum of per-mode unique findings x 1000 / sum of tokens."""
        report = VelocityReport(
            per_mode=[e.model_copy() for e in self.entries],
            distinct_findings=len(self._distinct),
        )
        total_tokens = sum(e.tokens_spent for e in self.entries)
        if total_tokens > 0:
            report.overall = sum(e.unique_findings for e in self.entries) * 1000 / total_tokens

        average = average_velocity(self.entries)
        for entry in self.entries:
            if entry.velocity > average:
                report.high_performers.append(entry.mode_id)
            if entry.velocity < LOW_VELOCITY_THRESHOLD:
                report.low_performers.append(entry.mode_id)
                report.suggestions.append(
                    f"{entry.display_name} underperforming, consider early stop"
                )
                logger.info(
                    "event=velocity_below_threshold mode=%s velocity=%.2f threshold=%.2f",
                    entry.mode_id,
                    entry.velocity,
                    LOW_VELOCITY_THRESHOLD,
                )
        return report

    def render(self) -> str:
        report = self.calculate_velocity()
        lines = [
            "Findings Velocity:",
            f"Overall: {report.overall:.2f} findings / 1k tokens",
            "",
        ]
        if report.per_mode:
            lines.append("Per Mode:")
            average = average_velocity(report.per_mode)
            for entry in report.per_mode:
                label = velocity_label(entry.velocity, average)
                line = f"{entry.display_name:<22} {entry.velocity:.2f} findings/1k"
                lines.append(f"{line} ({label})" if label else line)
        if report.suggestions:
            lines.append("")
            lines.extend(f"Suggestion: {s}" for s in report.suggestions)
        return "\n".join(lines) + "\n"
