# Append-only record of privileged actions. Appends are best effort: by the
# time a handler records an action its primary write has already happened, so
# a storage failure here is logged and reported as False, never raised.
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from database import DocumentStore


logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "admin_logs"


class AuditAction(str, Enum):
	BLOCK_USER = "BLOCK_USER"
	UNBLOCK_USER = "UNBLOCK_USER"
	UPDATE_APP_VERSION = "UPDATE_APP_VERSION"
	UPLOAD_APK = "UPLOAD_APK"
	UPLOAD_CONTENT = "UPLOAD_CONTENT"


class AuditLog:
	def __init__(self, store: DocumentStore):
		self._store = store
		self._last_ts: datetime | None = None

	def _next_timestamp(self) -> datetime:
		# strictly increasing even when the wall clock stalls or steps back
		now = datetime.now(timezone.utc)
		if self._last_ts is not None and now <= self._last_ts:
			now = self._last_ts + timedelta(microseconds=1)
		self._last_ts = now
		return now

	async def append(
		self,
		action: AuditAction,
		actor_email: str,
		target: str | None = None,
		payload: dict[str, Any] | None = None,
	) -> bool:
		entry = {
			"action": AuditAction(action).value,
			"actor_email": actor_email,
			"target": target,
			"payload": payload or {},
			"timestamp": self._next_timestamp().isoformat(),
		}
		try:
			await self._store.add_document(AUDIT_COLLECTION, entry)
		except Exception:
			logger.exception(f"Failed to record audit entry {entry['action']} by {actor_email}")
			return False
		logger.debug(f"Audit: {entry['action']} by {actor_email} target={target}")
		return True
