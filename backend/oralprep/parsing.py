from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from .errors import ParseError

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_provider_response(text: str) -> Dict[str, Any]:
	"""Extract the JSON object from a reasoning provider reply.

	Attempts to parse the entire text as JSON first, then the first ``{...}``
	block found in the text (models sometimes wrap JSON in prose or markdown).

	Raises:
		ParseError: If no JSON object can be extracted.
	"""
	if not isinstance(text, str) or not text.strip():
		raise ParseError("empty provider response")
	stripped = _FENCE_RE.sub("", text.strip())
	try:
		data = json.loads(stripped)
	except ValueError:
		data = None
	if data is None:
		match = _OBJECT_RE.search(stripped)
		if not match:
			raise ParseError("no JSON object in provider response")
		try:
			data = json.loads(match.group(0))
		except ValueError as exc:
			raise ParseError(f"malformed JSON in provider response: {exc}") from exc
	if not isinstance(data, dict):
		raise ParseError(f"expected a JSON object, got {type(data).__name__}")
	return data


def coerce_score(value: Any) -> int:
	"""Clamp a provider score to an integer in [0, 100]."""
	try:
		score = float(value)
	except (TypeError, ValueError) as exc:
		raise ParseError(f"score is not numeric: {value!r}") from exc
	if score != score:  # NaN
		raise ParseError("score is NaN")
	return int(max(0.0, min(100.0, score)) + 0.5)


def coerce_str_list(value: Any) -> List[str]:
	if value is None:
		return []
	if isinstance(value, str):
		return [value.strip()] if value.strip() else []
	if isinstance(value, (list, tuple)):
		return [str(item).strip() for item in value if item is not None and str(item).strip()]
	return []
