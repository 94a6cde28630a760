"""Exception taxonomy for the practice pipeline.

Adapters raise the provider/storage errors below; only the orchestrator decides
whether one of them is fatal to a session or just to a single question.
"""

from __future__ import annotations


class PipelineError(Exception):
	"""Session-level failure: the pipeline cannot continue for this session."""


class ConfigurationError(PipelineError):
	"""Missing or invalid provider configuration, detected at construction time."""


class SessionNotFound(PipelineError):
	def __init__(self, session_id: str) -> None:
		super().__init__(f"practice session {session_id} not found")
		self.session_id = session_id


class ProviderError(Exception):
	"""An external provider call failed for good (after any retries)."""


class TransientProviderError(ProviderError):
	"""Network blip, 429 or 5xx; the adapter layer may retry it."""


class ParseError(ProviderError):
	"""Provider replied, but no usable JSON object could be extracted."""


class ScoringError(ProviderError):
	def __init__(self, criterion: str, message: str) -> None:
		super().__init__(f"{criterion}: {message}")
		self.criterion = criterion


class StorageError(Exception):
	"""Recording store failure. Retryable from the caller's point of view."""
