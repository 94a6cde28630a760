"""
Criterion scoring
=================

Each criterion is scored with two sequential reasoning calls:

1. a *scoring* call that returns a 0-100 score, a coarse range and a short
   justification;
2. a *feedback* call that is given that score and returns qualitative
   feedback (strengths, improvements, free text).

Conditioning the feedback on the already-decided score keeps the number and
the prose consistent. If the feedback call fails the score is still returned
with empty feedback.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from .errors import ProviderError, ScoringError
from .parsing import coerce_score, coerce_str_list, parse_provider_response
from .schemas import Criterion, CriterionResult, ModuleType, PronunciationMetrics
from .weights import weight_for

logger = logging.getLogger(__name__)


class ReasoningProvider(Protocol):
	async def complete(self, system: str, prompt: str, *, model: Optional[str] = None) -> str:
		...


# ============================================================================
# PROMPTS
# ============================================================================

SCORING_SYSTEM = (
	"You are an experienced oral English examiner for high-school students. "
	"You score one criterion at a time and reply with STRICT JSON only."
)

FEEDBACK_SYSTEM = (
	"You are a supportive oral English teacher. The score has already been decided; "
	"explain it to the student. Reply with STRICT JSON only."
)

RUBRICS: Dict[Criterion, str] = {
	Criterion.TOPIC_DEVELOPMENT: (
		"Topic development: does the answer address the question directly, develop ideas with "
		"reasons and examples, and stay organized and relevant?"
	),
	Criterion.VOCABULARY: (
		"Vocabulary: range, precision and appropriacy of the words and expressions used, "
		"including topic-specific lexis and collocations."
	),
	Criterion.GRAMMAR: (
		"Language use: accuracy and range of grammatical structures (tenses, agreement, "
		"complex sentences), judged on spoken rather than written standards."
	),
	Criterion.FLUENCY: (
		"Delivery and fluency: flow of speech, hesitation and long pauses, pronunciation "
		"accuracy and intonation. Use the pronunciation assessment metrics provided."
	),
}


def format_pronunciation(metrics: Optional[PronunciationMetrics]) -> str:
	if metrics is None:
		return "=== Pronunciation Assessment Metrics ===\nNo pronunciation metrics available"

	def _fmt(value: Optional[int]) -> str:
		return f"{value}/100" if value is not None else "N/A"

	if metrics.long_pauses:
		pauses = "\n".join(
			f'• {p.duration_seconds}s pause after "{p.after_word}" before "{p.before_word}"'
			for p in metrics.long_pauses
		)
	else:
		pauses = "No abnormal pauses detected"
	if metrics.problematic_words:
		words = "\n".join(
			f'• "{w.word}" - Accuracy: {round(w.accuracy_score)}/100, Issue: {w.error_type}'
			for w in metrics.problematic_words
		)
	else:
		words = "No problematic words detected"
	return f"""=== Pronunciation Assessment Metrics ===
- Fluency Score: {_fmt(metrics.fluency_score)}
- Prosody Score: {_fmt(metrics.prosody_score)}
- Accuracy Score: {_fmt(metrics.accuracy_score)}
- Long pauses: {metrics.long_pause_count} (total {metrics.total_long_pause_time}s)

=== Long Pauses ===
{pauses}

=== Problematic Words ===
{words}"""


def _context_block(
	criterion: Criterion,
	module: ModuleType,
	question: str,
	transcript: str,
	pronunciation: Optional[PronunciationMetrics],
	video_transcript: Optional[str],
) -> str:
	parts = []
	if module == ModuleType.C and criterion == Criterion.TOPIC_DEVELOPMENT:
		parts.append(f'Video transcript:\n"""\n{video_transcript or "No video transcript available"}\n"""')
		parts.append(f'Question about the video: "{question}"')
	else:
		parts.append(f'Question: "{question}"')
	parts.append(f'Student\'s spoken answer (transcript):\n"{transcript}"')
	if criterion == Criterion.FLUENCY:
		parts.append(format_pronunciation(pronunciation))
	return "\n\n".join(parts)


def build_scoring_prompt(criterion: Criterion, context: str) -> str:
	return f"""
Score ONE criterion of a spoken answer.

{RUBRICS[criterion]}

{context}

Return STRICT JSON only:
{{
  "score": integer (0-100),
  "range": "coarse band, e.g. 55-75",
  "justification": "one or two sentences"
}}
""".strip()


def build_feedback_prompt(criterion: Criterion, context: str, score: int, score_range: Optional[str]) -> str:
	range_text = f" (range {score_range})" if score_range else ""
	return f"""
The student's answer was scored {score}/100{range_text} for this criterion.

{RUBRICS[criterion]}

{context}

Explain the score. Return STRICT JSON only:
{{
  "feedback": "two or three sentences addressed to the student",
  "strengths": ["what to keep doing", ...],
  "improvements": ["concrete next step", ...]
}}
""".strip()


# ============================================================================
# SCORER
# ============================================================================

class CriterionScorer:
	def __init__(
		self,
		provider: ReasoningProvider,
		*,
		feedback_model: Optional[str] = None,
	) -> None:
		self.provider = provider
		self.feedback_model = feedback_model

	async def _call(self, system: str, prompt: str, model: Optional[str] = None) -> Dict[str, Any]:
		raw = await self.provider.complete(system, prompt, model=model)
		return parse_provider_response(raw)

	async def score(
		self,
		criterion: Criterion,
		module: ModuleType,
		question: str,
		transcript: str,
		pronunciation: Optional[PronunciationMetrics] = None,
		video_transcript: Optional[str] = None,
	) -> CriterionResult:
		"""Score one criterion. Raises ScoringError if the scoring call fails."""
		# KeyError for criteria the module does not score (fluency on module C)
		try:
			weight = weight_for(module, criterion)
		except KeyError as exc:
			raise ValueError(str(exc)) from exc

		context = _context_block(criterion, module, question, transcript, pronunciation, video_transcript)
		try:
			data = await self._call(SCORING_SYSTEM, build_scoring_prompt(criterion, context))
			score = coerce_score(data.get("score"))
		except ProviderError as exc:
			raise ScoringError(criterion.value, str(exc)) from exc
		score_range = str(data.get("range") or "").strip() or None
		justification = str(data.get("justification") or "").strip()

		try:
			feedback = await self._call(
				FEEDBACK_SYSTEM,
				build_feedback_prompt(criterion, context, score, score_range),
				model=self.feedback_model,
			)
		except ProviderError as exc:
			logger.warning("feedback for %s failed, keeping score %d: %s", criterion.value, score, exc)
			return CriterionResult(
				criterion=criterion,
				score=score,
				weight=weight,
				range=score_range,
				justification=justification,
			)

		return CriterionResult(
			criterion=criterion,
			score=score,
			weight=weight,
			range=score_range,
			justification=justification,
			feedback=str(feedback.get("feedback") or feedback.get("generalFeedback") or "").strip(),
			strengths=coerce_str_list(feedback.get("strengths") or feedback.get("preservationPoints")),
			improvements=coerce_str_list(feedback.get("improvements") or feedback.get("improvementPoints")),
		)
