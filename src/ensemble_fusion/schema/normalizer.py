"""Parse lenient agent replies (YAML or JSON) into canonical ModeOutput.

Parse errors are fatal (ParseError / InvalidConfidenceError). Validation
problems are returned alongside the best-effort object as
ValidationIssue values with a JSONPath-like field locator, e.g.
``top_findings[0].confidence``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from ensemble_fusion.errors import InvalidConfidenceError, ParseError
from ensemble_fusion.schema.outputs import (
    ModeOutput,
    ValidationIssue,
    is_valid_confidence,
    is_valid_impact,
)

logger = logging.getLogger(__name__)

MODE_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")

_FENCE_RE = re.compile(
    r"```[ \t]*(yaml|yml|json)[ \t]*\r?\n(.*?)(?:\r?\n)?```",
    re.DOTALL | re.IGNORECASE,
)

_IMPACT_MESSAGE = "must be one of: critical, high, medium, low"
_RANGE_MESSAGE = "must be between 0.0 and 1.0"
_MISSING_MESSAGE = "required field is missing"


def strip_fenced_block(raw: str) -> str:
    """Return the body of the first ```yaml / ```json block, else *raw*."""
    match = _FENCE_RE.search(raw)
    if match is None:
        return raw
    return match.group(2)


def decode_document(content: str) -> dict[str, Any]:
    """Decode JSON first (stricter), then YAML. Must yield a mapping."""
    if not content.strip():
        msg = "empty output"
        raise ParseError(msg)

    try:
        doc: Any = json.loads(content)
    except json.JSONDecodeError:
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            msg = f"failed to parse output as JSON or YAML: {exc}"
            raise ParseError(msg) from exc

    if not isinstance(doc, dict):
        msg = (
            f"expected a mapping at the document root, "
            f"got {type(doc).__name__}"
        )
        raise ParseError(msg)
    return doc


def _locator(loc: tuple[int | str, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def build_mode_output(doc: dict[str, Any], raw: str) -> ModeOutput:
    """Construct a ModeOutput, mapping decoder failures to parse errors."""
    try:
        output = ModeOutput.model_validate(doc)
    except PydanticValidationError as exc:
        for err in exc.errors():
            cause = err.get("ctx", {}).get("error")
            if isinstance(cause, InvalidConfidenceError):
                msg = f"{_locator(err['loc'])}: {cause}"
                raise InvalidConfidenceError(msg) from exc
        first = exc.errors()[0]
        msg = f"{_locator(first['loc'])}: {first['msg']}"
        raise ParseError(msg) from exc

    if not output.raw_output:
        output = output.model_copy(update={"raw_output": raw})
    return output


def parse(raw_text: str) -> tuple[ModeOutput, list[ValidationIssue]]:
    """Parse and validate an agent reply.

    Raises ParseError when the text cannot be decoded at all.
    """
    content = strip_fenced_block(raw_text)
    doc = decode_document(content)
    output = build_mode_output(doc, raw_text)
    return output, validate_mode_output(output)


def parse_normalize(
    raw_text: str, fallback_mode_id: str
) -> tuple[ModeOutput, list[ValidationIssue]]:
    """Parse, normalize, then validate.

    Normalization lower-cases the mode_id and impact literals, trims text,
    and injects *fallback_mode_id* when mode_id is missing.
    """
    content = strip_fenced_block(raw_text)
    doc = decode_document(content)
    output = normalize_mode_output(build_mode_output(doc, raw_text), fallback_mode_id)
    return output, validate_mode_output(output)


def normalize_mode_output(output: ModeOutput, fallback_mode_id: str = "") -> ModeOutput:
    """Return a normalized copy; never invents values other than mode_id."""
    mode_id = output.mode_id.strip().lower()
    if not mode_id and fallback_mode_id:
        mode_id = fallback_mode_id.strip().lower()
        logger.debug("event=mode_id_injected mode=%s", mode_id)

    findings = [
        f.model_copy(
            update={
                "finding": f.finding.strip(),
                "impact": f.impact.strip().lower(),
                "evidence_pointer": f.evidence_pointer.strip(),
            }
        )
        for f in output.top_findings
    ]
    risks = [
        r.model_copy(update={"risk": r.risk.strip(), "impact": r.impact.strip().lower()})
        for r in output.risks
    ]
    recs = [
        r.model_copy(
            update={
                "recommendation": r.recommendation.strip(),
                "priority": r.priority.strip().lower(),
            }
        )
        for r in output.recommendations
    ]
    return output.model_copy(
        update={
            "mode_id": mode_id,
            "thesis": output.thesis.strip(),
            "top_findings": findings,
            "risks": risks,
            "recommendations": recs,
        }
    )


def validate_mode_output(output: ModeOutput) -> list[ValidationIssue]:
    """Check invariants: ids, thesis, findings, ranges and impact vocabulary."""
    issues: list[ValidationIssue] = []

    if not output.mode_id:
        issues.append(ValidationIssue(field="mode_id", message=_MISSING_MESSAGE))
    elif not MODE_ID_PATTERN.match(output.mode_id):
        issues.append(
            ValidationIssue(
                field="mode_id",
                message="must be a lowercase slug (a-z, 0-9, -)",
                value=output.mode_id,
            )
        )

    if not output.thesis.strip():
        issues.append(ValidationIssue(field="thesis", message=_MISSING_MESSAGE))

    if not output.top_findings:
        issues.append(
            ValidationIssue(
                field="top_findings", message="at least one finding is required"
            )
        )

    if not is_valid_confidence(output.confidence):
        issues.append(
            ValidationIssue(
                field="confidence", message=_RANGE_MESSAGE, value=output.confidence
            )
        )

    for i, f in enumerate(output.top_findings):
        prefix = f"top_findings[{i}]"
        if not f.finding.strip():
            issues.append(ValidationIssue(field=f"{prefix}.finding", message=_MISSING_MESSAGE))
        if not is_valid_impact(f.impact):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.impact", message=_IMPACT_MESSAGE, value=f.impact
                )
            )
        if not is_valid_confidence(f.confidence):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.confidence", message=_RANGE_MESSAGE, value=f.confidence
                )
            )

    for i, r in enumerate(output.risks):
        prefix = f"risks[{i}]"
        if not r.risk.strip():
            issues.append(ValidationIssue(field=f"{prefix}.risk", message=_MISSING_MESSAGE))
        if not is_valid_impact(r.impact):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.impact", message=_IMPACT_MESSAGE, value=r.impact
                )
            )
        if not is_valid_confidence(r.likelihood):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.likelihood", message=_RANGE_MESSAGE, value=r.likelihood
                )
            )

    for i, rec in enumerate(output.recommendations):
        prefix = f"recommendations[{i}]"
        if not rec.recommendation.strip():
            issues.append(
                ValidationIssue(field=f"{prefix}.recommendation", message=_MISSING_MESSAGE)
            )
        if not is_valid_impact(rec.priority):
            issues.append(
                ValidationIssue(
                    field=f"{prefix}.priority", message=_IMPACT_MESSAGE, value=rec.priority
                )
            )

    for i, q in enumerate(output.questions_for_user):
        if not q.question.strip():
            issues.append(
                ValidationIssue(
                    field=f"questions_for_user[{i}].question", message=_MISSING_MESSAGE
                )
            )

    return issues
