"""
Admin allow-list.

The current list lives in a single immutable snapshot. Readers take the
snapshot reference as-is; reload and replace_all build a new snapshot and swap
the reference, so a request never sees a half-updated set.
"""
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from database import DocumentStore


logger = logging.getLogger(__name__)

CONFIG_COLLECTION = "app_config"
ADMINS_DOC_ID = "admins"


class InvalidMasterKey(Exception):
	pass


@dataclass(frozen=True)
class AllowListSnapshot:
	emails: frozenset
	updated_at: str | None = None


def _normalize(emails: Iterable[str]) -> frozenset:
	return frozenset(e.strip() for e in emails if e and e.strip())


class AdminAllowList:
	def __init__(
		self,
		store: DocumentStore,
		seed_emails: Iterable[str] = (),
		master_key: str = "",
		fallback_master_key: str | None = None,
	):
		self._store = store
		self._snapshot = AllowListSnapshot(emails=_normalize(seed_emails))
		self._master_key = master_key or ""
		self._fallback_master_key = fallback_master_key or ""

	@property
	def emails(self) -> list[str]:
		return sorted(self._snapshot.emails)

	@property
	def updated_at(self) -> str | None:
		return self._snapshot.updated_at

	def is_authorized(self, email: str | None) -> bool:
		# exact, case-sensitive match
		if not email:
			return False
		return email in self._snapshot.emails

	def warn_if_insecure(self) -> None:
		if not self._master_key and self._fallback_master_key:
			logger.warning(
				"ADMIN_MASTER_KEY is not set; the built-in development master key is accepted "
				"by /api/admin/set-admins. Set ADMIN_MASTER_KEY before deploying."
			)
		elif not self._master_key:
			logger.warning("No master key configured; /api/admin/set-admins will reject every request")

	def check_master_key(self, presented: str | None) -> bool:
		if not presented:
			return False
		for key in (self._master_key, self._fallback_master_key):
			if key and hmac.compare_digest(presented.encode(), key.encode()):
				return True
		return False

	async def reload(self) -> None:
		"""Replaces the in-memory list with the stored one. A missing document keeps the current list."""
		try:
			doc = await self._store.get_document(CONFIG_COLLECTION, ADMINS_DOC_ID)
		except Exception:
			logger.exception("Could not load admin list from storage, keeping current list")
			return
		if doc is None:
			logger.warning(f"No admin list stored yet, using {len(self._snapshot.emails)} admin(s) from environment")
			return
		self._snapshot = AllowListSnapshot(
			emails=_normalize(doc.get("emails") or []),
			updated_at=doc.get("updatedAt"),
		)
		logger.info(f"Admins loaded: {self.emails}")

	async def replace_all(self, emails: list[str], presented_secret: str | None) -> list[str]:
		if not self.check_master_key(presented_secret):
			raise InvalidMasterKey("Invalid master key")
		snapshot = AllowListSnapshot(
			emails=_normalize(emails),
			updated_at=datetime.now(timezone.utc).isoformat(),
		)
		# persist first: a failed write leaves both copies on the old list
		await self._store.set_document(CONFIG_COLLECTION, ADMINS_DOC_ID, {
			"emails": sorted(snapshot.emails),
			"updatedAt": snapshot.updated_at,
		})
		self._snapshot = snapshot
		logger.info(f"Admin list replaced: {self.emails}")
		return self.emails
