# Adapter over the Firebase Admin SDK: ID token verification and user listing.
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials, exceptions as firebase_exceptions
from fastapi.concurrency import run_in_threadpool


logger = logging.getLogger(__name__)

APP_NAME = "cineflow-admin"


class InvalidCredential(Exception):
	"""The bearer credential was malformed, expired or not issued for this project."""


class IdentityProviderError(Exception):
	"""The identity provider could not be reached or is not configured."""


@dataclass(frozen=True)
class Identity:
	subject_id: str
	email: str


@dataclass(frozen=True)
class ProviderUser:
	uid: str
	email: str | None = None
	display_name: str | None = None
	photo_url: str | None = None
	created_at: datetime | None = None
	last_sign_in: datetime | None = None


def _from_millis(value: int | None) -> datetime | None:
	if not value:
		return None
	return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class FirebaseIdentityProvider:
	def __init__(self, service_account_path: Path):
		self.service_account_path = Path(service_account_path)
		self._app = None

	def initialize(self) -> bool:
		"""
		Loads the service account and creates the SDK app.
		Returns False and logs when the key file is missing or invalid; requests
		that need the provider then fail with IdentityProviderError.
		"""
		try:
			try:
				self._app = firebase_admin.get_app(APP_NAME)
			except ValueError:
				cred = credentials.Certificate(str(self.service_account_path))
				self._app = firebase_admin.initialize_app(cred, name=APP_NAME)
			logger.info("Firebase Admin SDK initialized")
			return True
		except Exception as e:
			logger.error(f"Firebase Admin init failed ({self.service_account_path}): {e}")
			self._app = None
			return False

	def _require_app(self):
		if self._app is None:
			raise IdentityProviderError("Identity provider is not initialized")
		return self._app

	async def verify_token(self, token: str) -> Identity:
		app = self._require_app()
		try:
			decoded = await run_in_threadpool(firebase_auth.verify_id_token, token, app)
		except (ValueError, firebase_exceptions.FirebaseError) as e:
			# expired, revoked, wrong audience and bad signature all end up here
			logger.debug(f"Token verification failed: {type(e).__name__}: {e}")
			raise InvalidCredential(str(e)) from e
		return Identity(subject_id=decoded["uid"], email=decoded.get("email") or "")

	async def list_users(self, page_size: int = 1000) -> list[ProviderUser]:
		app = self._require_app()

		def _collect() -> list[ProviderUser]:
			page = firebase_auth.list_users(max_results=page_size, app=app)
			users = []
			for record in page.iterate_all():
				meta = record.user_metadata
				users.append(ProviderUser(
					uid=record.uid,
					email=record.email,
					display_name=record.display_name,
					photo_url=record.photo_url,
					created_at=_from_millis(meta.creation_timestamp if meta else None),
					last_sign_in=_from_millis(meta.last_sign_in_timestamp if meta else None),
				))
			return users

		try:
			return await run_in_threadpool(_collect)
		except firebase_exceptions.FirebaseError as e:
			raise IdentityProviderError(str(e)) from e
