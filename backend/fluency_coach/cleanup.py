from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .session import CoachingSession

logger = logging.getLogger(__name__)


async def purge_idle_sessions(
	sessions: Dict[str, CoachingSession],
	max_idle: timedelta,
	*,
	now: Optional[datetime] = None,
) -> int:
	threshold = (now or datetime.now(timezone.utc)) - max_idle
	# Busy sessions are mid-request and get touched again when it resolves
	stale = [
		sid for sid, state in sessions.items()
		if state.last_activity < threshold and not state.busy
	]
	removed = 0
	for sid in stale:
		state = sessions.pop(sid, None)
		if state is None:
			continue
		# Releases the microphone and live socket if a recording was left open
		await state.reset()
		removed += 1
	if removed:
		logger.info("Purged %d idle sessions", removed)
	return removed
