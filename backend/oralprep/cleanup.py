from __future__ import annotations

import logging
from typing import Dict

from .repository import PracticeRepository
from .storage import RecordingStore, check_owner_id

logger = logging.getLogger(__name__)


async def erase_owner_data(repository: PracticeRepository, store: RecordingStore, owner_id: str) -> Dict[str, int]:
	"""Delete every practice session and stored recording belonging to one owner.

	Recordings go first: if the store fails the rows are kept, so the erasure
	can simply be retried.
	"""
	check_owner_id(owner_id)
	recordings = await store.delete_prefix(f"{owner_id}/")
	sessions = repository.delete_owner(owner_id)
	logger.info("erased owner %s: %d sessions, %d recordings", owner_id, sessions, recordings)
	return {"sessions": sessions, "recordings": recordings}
