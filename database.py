# Document store on top of SQLite. Each document is a JSON object keyed by
# (collection, doc_id); append-only collections use generated ids.
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite


def _dumps(data: dict) -> str:
	return json.dumps(data, default=str, ensure_ascii=False)


class DocumentStore:
	def __init__(self, db_path: Path):
		self.db_path = Path(db_path)

	async def init(self) -> None:
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		async with aiosqlite.connect(self.db_path) as db:
			await db.execute("""
			CREATE TABLE IF NOT EXISTS document (
				seq INTEGER PRIMARY KEY AUTOINCREMENT,
				collection TEXT NOT NULL,
				doc_id TEXT NOT NULL,
				data TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
			""")
			await db.execute("""
			CREATE UNIQUE INDEX IF NOT EXISTS idx_document_collection_id
			ON document(collection, doc_id)
			""")
			await db.commit()

	async def ping(self) -> bool:
		async with aiosqlite.connect(self.db_path) as db:
			cur = await db.execute("SELECT 1")
			return (await cur.fetchone()) is not None

	async def get_document(self, collection: str, doc_id: str) -> dict | None:
		async with aiosqlite.connect(self.db_path) as db:
			cur = await db.execute(
				"SELECT data FROM document WHERE collection = ? AND doc_id = ?",
				(collection, doc_id),
			)
			row = await cur.fetchone()
		if row is None:
			return None
		return json.loads(row[0])

	async def set_document(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> dict:
		"""
		Writes a document and returns what was stored.
		With merge=True the given fields are laid over the stored document, so
		fields not mentioned in data keep their previous value.
		"""
		now = datetime.now(timezone.utc).isoformat()
		async with aiosqlite.connect(self.db_path) as db:
			# read and write under one write lock so merges do not interleave
			await db.execute("BEGIN IMMEDIATE")
			try:
				stored = dict(data)
				if merge:
					cur = await db.execute(
						"SELECT data FROM document WHERE collection = ? AND doc_id = ?",
						(collection, doc_id),
					)
					row = await cur.fetchone()
					if row is not None:
						stored = {**json.loads(row[0]), **data}
				await db.execute(
					"""
					INSERT INTO document (collection, doc_id, data, updated_at) VALUES (?, ?, ?, ?)
					ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
					""",
					(collection, doc_id, _dumps(stored), now),
				)
				await db.commit()
			except Exception:
				await db.rollback()
				raise
		return stored

	async def add_document(self, collection: str, data: dict) -> str:
		doc_id = uuid.uuid4().hex
		now = datetime.now(timezone.utc).isoformat()
		async with aiosqlite.connect(self.db_path) as db:
			await db.execute(
				"INSERT INTO document (collection, doc_id, data, updated_at) VALUES (?, ?, ?, ?)",
				(collection, doc_id, _dumps(data), now),
			)
			await db.commit()
		return doc_id

	async def list_documents(self, collection: str) -> dict[str, dict]:
		async with aiosqlite.connect(self.db_path) as db:
			cur = await db.execute(
				"SELECT doc_id, data FROM document WHERE collection = ? ORDER BY seq",
				(collection,),
			)
			rows = await cur.fetchall()
		return {doc_id: json.loads(data) for doc_id, data in rows}

	async def query_documents(self, collection: str, field: str, value) -> dict[str, dict]:
		"""Equality filter on a top-level field of the stored JSON."""
		async with aiosqlite.connect(self.db_path) as db:
			cur = await db.execute(
				"""
				SELECT doc_id, data FROM document
				WHERE collection = ? AND json_extract(data, ?) = ?
				ORDER BY seq
				""",
				(collection, f"$.{field}", value),
			)
			rows = await cur.fetchall()
		return {doc_id: json.loads(data) for doc_id, data in rows}
