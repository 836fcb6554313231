import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import config
import main
from audit import AUDIT_COLLECTION
from identity import Identity, InvalidCredential, ProviderUser


ADMIN_EMAIL = "admin@example.com"
ADMIN_TOKEN = "admin-token"
OTHER_ADMIN_EMAIL = "second@example.com"
OTHER_ADMIN_TOKEN = "second-token"
USER_EMAIL = "viewer@example.com"
USER_TOKEN = "viewer-token"
MASTER_KEY = "operator-key"


class FakeIdentityProvider:
	"""In-memory stand-in for the Firebase adapter."""

	def __init__(self):
		self.tokens: dict[str, Identity] = {}
		self.users: list[ProviderUser] = []
		self.verify_calls = 0

	def add_token(self, token: str, email: str, uid: str | None = None):
		self.tokens[token] = Identity(subject_id=uid or f"uid-{email}", email=email)

	async def verify_token(self, token: str) -> Identity:
		self.verify_calls += 1
		if token not in self.tokens:
			raise InvalidCredential("unknown token")
		return self.tokens[token]

	async def list_users(self, page_size: int = 1000) -> list[ProviderUser]:
		return list(self.users)


def auth(token: str) -> dict:
	return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def provider():
	fake = FakeIdentityProvider()
	fake.add_token(ADMIN_TOKEN, ADMIN_EMAIL)
	fake.add_token(OTHER_ADMIN_TOKEN, OTHER_ADMIN_EMAIL)
	fake.add_token(USER_TOKEN, USER_EMAIL)
	now = datetime.now(timezone.utc)
	fake.users = [
		ProviderUser(uid="u1", email="one@example.com", display_name="One",
			created_at=now - timedelta(days=30), last_sign_in=now - timedelta(days=1)),
		ProviderUser(uid="u2", email="two@example.com",
			created_at=now - timedelta(days=2)),
	]
	return fake


@pytest.fixture
def client(tmp_path, monkeypatch, provider):
	monkeypatch.setattr(config, "DATA_ROOT_PATH", tmp_path / "uploads")
	monkeypatch.setattr(config, "DB_PATH", tmp_path / "db" / "test.db")
	monkeypatch.setattr(config, "PUBLIC_DIR", tmp_path / "public")
	monkeypatch.setattr(config, "ADMIN_EMAILS", [ADMIN_EMAIL])
	monkeypatch.setattr(config, "ADMIN_MASTER_KEY", MASTER_KEY)
	monkeypatch.setattr(config, "ALLOW_FALLBACK_MASTER_KEY", False)
	monkeypatch.setattr(config, "LOGGER_CONFIG_PATH", tmp_path / "no-logger-config.yaml")
	monkeypatch.setattr(config, "FIREBASE_SERVICE_ACCOUNT_PATH", tmp_path / "no-service-account.json")

	with TestClient(main.app) as c:
		main.app.state.identity = provider
		yield c


@pytest.fixture
def audit_entries(client):
	def _read():
		docs = asyncio.run(main.app.state.store.list_documents(AUDIT_COLLECTION))
		return list(docs.values())
	return _read
