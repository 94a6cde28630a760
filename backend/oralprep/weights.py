"""Scoring weights.

Weights depend only on (module type, criterion). Adding a module type means
adding a row to ``MODULE_CRITERIA``; nothing else in the pipeline branches on
module identity.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .schemas import Criterion, ModuleType, SessionType

# Ordered (criterion, weight %) per module; weights of a row sum to 100.
MODULE_CRITERIA: Dict[ModuleType, List[Tuple[Criterion, int]]] = {
	ModuleType.A: [
		(Criterion.TOPIC_DEVELOPMENT, 50),
		(Criterion.VOCABULARY, 20),
		(Criterion.GRAMMAR, 15),
		(Criterion.FLUENCY, 15),
	],
	ModuleType.B: [
		(Criterion.TOPIC_DEVELOPMENT, 50),
		(Criterion.VOCABULARY, 20),
		(Criterion.GRAMMAR, 15),
		(Criterion.FLUENCY, 15),
	],
	# Video comprehension: fluency is not scored
	ModuleType.C: [
		(Criterion.TOPIC_DEVELOPMENT, 60),
		(Criterion.VOCABULARY, 20),
		(Criterion.GRAMMAR, 20),
	],
}

# Share of the simulation total carried by each module. A module's share is
# split evenly between its questions.
SIMULATION_MODULE_WEIGHTS: Dict[ModuleType, int] = {
	ModuleType.A: 25,
	ModuleType.B: 25,
	ModuleType.C: 50,
}

SINGLE_MODULE_SESSIONS: Dict[SessionType, ModuleType] = {
	SessionType.MODULE_A: ModuleType.A,
	SessionType.MODULE_B: ModuleType.B,
	SessionType.MODULE_C: ModuleType.C,
}

# Simulation question order: one module A question, one module B question, then module C
_SIMULATION_ORDER: List[ModuleType] = [ModuleType.A, ModuleType.B]


def applicable_criteria(module: ModuleType) -> List[Tuple[Criterion, int]]:
	return list(MODULE_CRITERIA[module])


def weight_for(module: ModuleType, criterion: Criterion) -> int:
	for name, weight in MODULE_CRITERIA[module]:
		if name == criterion:
			return weight
	raise KeyError(f"{criterion.value} is not scored for {module.value}")


def resolve_module(session_type: SessionType, order_index: int, explicit: Optional[ModuleType] = None) -> ModuleType:
	"""Module a question belongs to, from the session type and its position."""
	if session_type in SINGLE_MODULE_SESSIONS:
		module = SINGLE_MODULE_SESSIONS[session_type]
		if explicit is not None and explicit != module:
			raise ValueError(f"question module {explicit.value} does not match session type {session_type.value}")
		return module
	if explicit is not None:
		return explicit
	if order_index < len(_SIMULATION_ORDER):
		return _SIMULATION_ORDER[order_index]
	return ModuleType.C


def round_half_up(numerator: int, denominator: int = 1) -> int:
	"""Round numerator/denominator to the nearest integer, halves away from zero.

	Works on integers so that e.g. 76.5 is never seen as 76.4999... .
	"""
	if denominator <= 0:
		raise ValueError("denominator must be positive")
	if numerator < 0:
		return -round_half_up(-numerator, denominator)
	return (2 * numerator + denominator) // (2 * denominator)
