"""Marginal-utility detector that decides whether to stop launching modes."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from ensemble_fusion.constants import EarlyStopReason
from ensemble_fusion.fusion.similarity import jaccard, normalize, tokenize
from ensemble_fusion.schema.configs import EarlyStopConfig
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)

RATE_WARNING_FACTOR = 1.1
SIMILARITY_WARNING_FACTOR = 0.9


class StopDecision(BaseModel):
    should_stop: bool = False
    reason: EarlyStopReason = EarlyStopReason.CONTINUE
    findings_rate: float = 0.0
    similarity_score: float = 0.0
    agents_run: int = 0


def output_signature(output: ModeOutput) -> str:
    """Thesis plus every finding, risk, recommendation and question text."""
    parts = [output.thesis]
    parts.extend(f.finding for f in output.top_findings)
    parts.extend(r.risk for r in output.risks)
    parts.extend(r.recommendation for r in output.recommendations)
    parts.extend(q.question for q in output.questions_for_user)
    return " ".join(p for p in parts if p)


class EarlyStopDetector:
    def __init__(self, config: EarlyStopConfig | None = None) -> None:
        self.config = config or EarlyStopConfig()
        self.outputs: list[ModeOutput] = []
        self.tokens_spent: list[int] = []

    def record_output(self, output: ModeOutput, tokens: int) -> None:
        self.outputs.append(output)
        self.tokens_spent.append(max(tokens, 0))

    def _window_start(self) -> int:
        window = self.config.window_size
        if window <= 0 or window > len(self.outputs):
            window = len(self.outputs)
        return len(self.outputs) - window

    def window_outputs(self) -> list[ModeOutput]:
        return self.outputs[self._window_start() :]

    def window_tokens(self) -> int:
        return sum(self.tokens_spent[self._window_start() :])

    def calculate_findings_rate(self) -> float:
        """Unique normalized findings per token within the window."""
        tokens = self.window_tokens()
        if tokens <= 0:
            return 0.0
        unique = {
            normalize(f.finding)
            for output in self.window_outputs()
            for f in output.top_findings
            if normalize(f.finding)
        }
        return len(unique) / tokens

    def calculate_similarity(self) -> float:
        """Mean pairwise Jaccard over output signatures in the window."""
        token_sets = [tokenize(output_signature(o)) for o in self.window_outputs()]
        if len(token_sets) < 2:
            return 0.0
        scores = [
            jaccard(token_sets[i], token_sets[j])
            for i in range(len(token_sets))
            for j in range(i + 1, len(token_sets))
        ]
        return sum(scores) / len(scores)

    def should_stop(self) -> StopDecision:
        cfg = self.config
        decision = StopDecision(agents_run=len(self.outputs))
        if not cfg.enabled:
            decision.reason = EarlyStopReason.DISABLED
            return decision
        if decision.agents_run < max(cfg.min_agents_before_stop, 0):
            decision.reason = EarlyStopReason.MIN_AGENTS
            return decision

        decision.findings_rate = self.calculate_findings_rate()
        decision.similarity_score = self.calculate_similarity()
        rate_armed = cfg.findings_threshold > 0 and self.window_tokens() > 0
        sim_armed = cfg.similarity_threshold > 0 and len(self.window_outputs()) >= 2

        rate_stop = rate_armed and decision.findings_rate < cfg.findings_threshold
        sim_stop = sim_armed and decision.similarity_score >= cfg.similarity_threshold

        if rate_stop and sim_stop:
            decision.reason = EarlyStopReason.FINDINGS_RATE_AND_SIMILARITY
        elif rate_stop:
            decision.reason = EarlyStopReason.FINDINGS_RATE
        elif sim_stop:
            decision.reason = EarlyStopReason.SIMILARITY
        else:
            decision.reason = EarlyStopReason.CONTINUE
        decision.should_stop = rate_stop or sim_stop

        logger.debug(
            "event=early_stop_decision agents=%d window=%d rate=%.6f similarity=%.3f "
            "stop=%s reason=%s",
            decision.agents_run,
            cfg.window_size,
            decision.findings_rate,
            decision.similarity_score,
            decision.should_stop,
            decision.reason,
        )
        if decision.should_stop:
            logger.info(
                "event=early_stop_triggered agents=%d reason=%s",
                decision.agents_run,
                decision.reason,
            )
            return decision

        if rate_armed and decision.findings_rate <= cfg.findings_threshold * RATE_WARNING_FACTOR:
            logger.warning(
                "event=early_stop_approaching metric=findings_rate value=%.6f threshold=%.6f",
                decision.findings_rate,
                cfg.findings_threshold,
            )
        if sim_armed and decision.similarity_score >= (
            cfg.similarity_threshold * SIMILARITY_WARNING_FACTOR
        ):
            logger.warning(
                "event=early_stop_approaching metric=similarity value=%.3f threshold=%.3f",
                decision.similarity_score,
                cfg.similarity_threshold,
            )
        return decision
