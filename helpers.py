# Helper functions shared by the route handlers
import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from starlette.datastructures import UploadFile

from identity import ProviderUser


class UploadTooLarge(Exception):
	pass


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
	return value.isoformat() if value is not None else None


def format_size(size: int) -> str:
	return f"{size / (1024 * 1024):.2f} MB"


def has_allowed_suffix(filename: str | None, suffixes: tuple[str, ...]) -> bool:
	if not filename:
		return False
	return filename.endswith(suffixes)


def content_length_exceeds(headers, limit: int) -> bool:
	"""True when the declared request size is already over limit. Missing or bad headers pass."""
	try:
		return int(headers.get("content-length", "")) > limit
	except ValueError:
		return False


def describe_validation_error(errors: list[dict]) -> str:
	if not errors:
		return "Invalid request"
	first = errors[0]
	loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
	message = first.get("msg", "invalid value")
	if loc and first.get("type") != "json_invalid":
		return f"Invalid request: {'.'.join(loc)}: {message}"
	return f"Invalid request: {message}"


def file_info(path: Path) -> dict | None:
	"""Size and modification time of an artifact slot, or None when empty."""
	try:
		stat = path.stat()
	except FileNotFoundError:
		return None
	return {
		"size": stat.st_size,
		"sizeFormatted": format_size(stat.st_size),
		"lastModified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
	}


def default_overlay() -> dict:
	return {"isBlocked": False, "blockedReason": "", "blockedAt": None}


def merge_user(user: ProviderUser, overlay: dict | None) -> dict:
	"""
	Merged admin view of one user.
	Identity fields come from the identity provider; moderation fields come from
	the overlay document, defaulting to not blocked when there is none.
	"""
	overlay = overlay or {}
	moderation = default_overlay()
	moderation["isBlocked"] = bool(overlay.get("isBlocked", False))
	moderation["blockedReason"] = overlay.get("blockedReason") or ""
	moderation["blockedAt"] = overlay.get("blockedAt")
	return {
		"uid": user.uid,
		"email": user.email,
		"displayName": user.display_name or overlay.get("displayName") or "No name",
		"photoURL": user.photo_url,
		"createdAt": to_iso(user.created_at),
		"lastSignIn": to_iso(user.last_sign_in),
		**moderation,
	}


def compute_stats(users: list[ProviderUser], blocked_uids: set[str], now: datetime, recent_days: int = 7) -> dict:
	known = {u.uid for u in users}
	blocked = len(known & set(blocked_uids))
	cutoff = now - timedelta(days=recent_days)
	recent = sum(1 for u in users if u.created_at is not None and u.created_at > cutoff)
	return {
		"totalUsers": len(users),
		"activeUsers": len(users) - blocked,
		"blockedUsers": blocked,
		"recentUsers": recent,
	}


def build_content_stamp(size: int, description: str, now: datetime) -> dict:
	return {
		"version": str(int(now.timestamp() * 1000)),
		"updatedAt": now.isoformat(),
		"description": description,
		"size": size,
	}


def default_content_stamp() -> dict:
	return {"version": "0", "updatedAt": None, "description": "", "size": 0}


async def save_upload(upload: UploadFile, dest: Path, max_size: int, chunk_size: int = 1024 * 1024) -> int:
	"""
	Streams an upload into dest and returns the number of bytes written.
	Data goes to a temporary file next to dest and only replaces dest once the
	whole upload is in; on any error dest is left as it was.
	"""
	dest.parent.mkdir(parents=True, exist_ok=True)
	fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".part")
	size = 0
	try:
		with os.fdopen(fd, "wb") as out:
			while True:
				chunk = await upload.read(chunk_size)
				if not chunk:
					break
				size += len(chunk)
				if size > max_size:
					raise UploadTooLarge(f"File exceeds {format_size(max_size)}")
				out.write(chunk)
		os.replace(tmp_name, dest)
	except BaseException:
		Path(tmp_name).unlink(missing_ok=True)
		raise
	return size


def write_json(path: Path, data: dict) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp = path.with_name(path.name + ".tmp")
	with open(tmp, "w", encoding="utf-8") as f:
		json.dump(data, f)
	os.replace(tmp, path)


def read_json(path: Path) -> dict | None:
	try:
		with open(path, "r", encoding="utf-8") as f:
			return json.load(f)
	except FileNotFoundError:
		return None
