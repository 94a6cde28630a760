from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retries(
	call: Callable[[], Awaitable[T]],
	*,
	attempts: int,
	backoff_seconds: float,
	label: str,
) -> T:
	"""Run ``call``, retrying TransientProviderError up to ``attempts`` extra times.

	Backoff is linear (backoff_seconds * attempt number). The last transient
	error is re-raised as a plain ProviderError so callers see a hard failure.
	"""
	last_error: TransientProviderError | None = None
	for attempt in range(attempts + 1):
		try:
			return await call()
		except TransientProviderError as err:
			last_error = err
			if attempt >= attempts:
				break
			delay = backoff_seconds * (attempt + 1)
			logger.warning("%s failed (%s); retry %d/%d in %.1fs", label, err, attempt + 1, attempts, delay)
			await asyncio.sleep(delay)
	raise ProviderError(f"{label} failed after {attempts + 1} attempts: {last_error}") from last_error
