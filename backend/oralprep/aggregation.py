from __future__ import annotations

from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence

from .schemas import (
	NO_SPEECH_SENTINELS,
	CriterionResult,
	ModuleType,
	QuestionOutcome,
	QuestionResult,
	Scored,
	SessionTotals,
	SessionType,
	Unscored,
	UnscoredReason,
	is_usable_transcript,
)
from .weights import MODULE_CRITERIA, SIMULATION_MODULE_WEIGHTS, SINGLE_MODULE_SESSIONS, round_half_up

# Session-level strengths/improvements lists are capped at this length
MAX_SESSION_POINTS = 10


def unscored_reason_for(transcript: Optional[str]) -> UnscoredReason:
	if transcript is not None and (not transcript.strip() or transcript.strip() in NO_SPEECH_SENTINELS):
		return UnscoredReason.NO_SPEECH
	return UnscoredReason.TRANSCRIPTION_FAILED


def aggregate_question(
	module: ModuleType,
	transcript: Optional[str],
	criterion_results: Iterable[CriterionResult],
) -> QuestionResult:
	"""Combine per-criterion results into one question total.

	Only the module's applicable criteria count; their weights sum to 100 so no
	renormalization happens. A missing or sentinel transcript is never scored.
	"""
	if not is_usable_transcript(transcript):
		return Unscored(reason=unscored_reason_for(transcript))

	by_criterion = {r.criterion: r for r in criterion_results}
	weighted_sum = 0
	criteria: List[CriterionResult] = []
	for criterion, weight in MODULE_CRITERIA[module]:
		result = by_criterion.get(criterion)
		if result is None:
			raise ValueError(f"missing {criterion.value} result for {module.value}")
		if result.weight != weight:
			result = result.model_copy(update={"weight": weight})
		weighted_sum += result.score * weight
		criteria.append(result)
	return Scored(total=round_half_up(weighted_sum, 100), criteria=criteria)


def _dedupe(points: Iterable[str], limit: int = MAX_SESSION_POINTS) -> List[str]:
	seen: List[str] = []
	for point in points:
		text = (point or "").strip()
		if text and text not in seen:
			seen.append(text)
		if len(seen) >= limit:
			break
	return seen


def criterion_averages(outcomes: Sequence[QuestionOutcome]) -> Dict[str, int]:
	sums: Dict[str, int] = {}
	counts: Dict[str, int] = {}
	for outcome in outcomes:
		if not isinstance(outcome.result, Scored):
			continue
		for result in outcome.result.criteria:
			key = result.criterion.value
			sums[key] = sums.get(key, 0) + result.score
			counts[key] = counts.get(key, 0) + 1
	return {key: round_half_up(sums[key], counts[key]) for key in sums}


def _module_totals(outcomes: Sequence[QuestionOutcome]) -> Dict[ModuleType, List[int]]:
	totals: Dict[ModuleType, List[int]] = {module: [] for module in SIMULATION_MODULE_WEIGHTS}
	for outcome in sorted(outcomes, key=lambda o: o.order_index):
		totals.setdefault(outcome.module, []).append(outcome.total)
	return totals


def aggregate_session(outcomes: Sequence[QuestionOutcome], session_type: SessionType) -> SessionTotals:
	"""Session total and breakdown.

	Single-module sessions average every question total (unscored questions
	count as zero). Simulations weight module A and B at 25% each and the mean
	of the module C questions at 50%.
	"""
	module_breakdown: Optional[Dict[str, int]] = None
	if session_type in SINGLE_MODULE_SESSIONS:
		totals = [o.total for o in outcomes]
		total = round_half_up(sum(totals), len(totals)) if totals else 0
	else:
		per_module = _module_totals(outcomes)
		weighted = Fraction(0)
		module_breakdown = {}
		for module, share in SIMULATION_MODULE_WEIGHTS.items():
			scores = per_module.get(module) or []
			if not scores:
				module_breakdown[module.value] = 0
				continue
			weighted += Fraction(share * sum(scores), len(scores))
			module_breakdown[module.value] = round_half_up(sum(scores), len(scores))
		weighted /= 100
		total = round_half_up(weighted.numerator, weighted.denominator)

	strengths: List[str] = []
	improvements: List[str] = []
	for outcome in sorted(outcomes, key=lambda o: o.order_index):
		if isinstance(outcome.result, Scored):
			for result in outcome.result.criteria:
				strengths.extend(result.strengths)
				improvements.extend(result.improvements)

	return SessionTotals(
		total=max(0, min(100, total)),
		module_breakdown=module_breakdown,
		criterion_averages=criterion_averages(outcomes),
		strengths=_dedupe(strengths),
		improvements=_dedupe(improvements),
	)
