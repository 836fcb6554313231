from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from pydantic import BaseModel
import asyncio
import logging
import logging.config
import shutil
import yaml

import config
from admins import AdminAllowList, InvalidMasterKey, CONFIG_COLLECTION
from audit import AuditAction, AuditLog
from database import DocumentStore
from gateway import require_admin
from identity import FirebaseIdentityProvider, Identity
from helpers import (
	UploadTooLarge,
	build_content_stamp,
	content_length_exceeds,
	describe_validation_error,
	compute_stats,
	default_content_stamp,
	default_overlay,
	file_info,
	format_size,
	has_allowed_suffix,
	merge_user,
	read_json,
	save_upload,
	utcnow,
	write_json,
)


USERS_COLLECTION = "users"
VERSION_DOC_ID = "version"

DEFAULT_APP_VERSION = {
	"minVersion": "1.0.0",
	"forceUpdate": False,
	"updateMessage": "",
	"downloadUrl": "",
}


def init_logger() -> logging.Logger:
	try:
		with open(config.LOGGER_CONFIG_PATH, "r") as f:
			logger_config = yaml.safe_load(f)
		logging.config.dictConfig(logger_config)
		logger = logging.getLogger(config.LOGGER_NAME)
		logger.debug("Logger configured")
		return logger
	except Exception as e:
		logging.basicConfig(level=logging.INFO)
		logger = logging.getLogger(__name__)
		logger.error(f"Logger initialization failed: {e}")
		return logger


@asynccontextmanager
async def lifespan(app: FastAPI):
	app.state.logger = init_logger()
	logger = app.state.logger

	# Check storage permissions
	try:
		config.DATA_ROOT_PATH.mkdir(parents=True, exist_ok=True)
		test_dir = config.DATA_ROOT_PATH / "testing_write_permissions"
		test_dir.mkdir()
		shutil.rmtree(test_dir)
		logger.info(f"Storage path is writable: {config.DATA_ROOT_PATH}")
	except Exception as e:
		logger.error(f"Storage path not writable: {e}")

	store = DocumentStore(config.DB_PATH)
	await store.init()
	logger.info("Database ready")
	app.state.store = store
	app.state.audit = AuditLog(store)

	admins = AdminAllowList(
		store,
		seed_emails=config.ADMIN_EMAILS,
		master_key=config.ADMIN_MASTER_KEY,
		fallback_master_key=config.FALLBACK_MASTER_KEY if config.ALLOW_FALLBACK_MASTER_KEY else None,
	)
	admins.warn_if_insecure()
	await admins.reload()
	logger.info(f"Admin allow-list has {len(admins.emails)} entries")
	app.state.admins = admins

	identity = FirebaseIdentityProvider(config.FIREBASE_SERVICE_ACCOUNT_PATH)
	identity.initialize()
	app.state.identity = identity

	yield
	logger.info("Application shutdown")


app = FastAPI(
	title="CineFlow Admin Server",
	version="0.1",
	description="Admin back-office for the CineFlow app",
	lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	return JSONResponse(
		{"error": exc.detail},
		status_code=exc.status_code,
		headers=getattr(exc, "headers", None),
	)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	return JSONResponse({"error": describe_validation_error(exc.errors())}, status_code=422)


class SetAdminsRequest(BaseModel):
	emails: list[str]
	masterKey: str = ""


class BlockRequest(BaseModel):
	block: bool
	reason: str | None = None


class AppUpdateRequest(BaseModel):
	minVersion: str | None = None
	forceUpdate: bool | None = None
	updateMessage: str | None = None
	downloadUrl: str | None = None


# ==========================================
# Public routes
# ==========================================

@app.get("/")
async def index():
	index_path = config.PUBLIC_DIR / "index.html"
	if not index_path.is_file():
		raise HTTPException(status_code=404, detail="Admin panel not installed")
	return FileResponse(index_path)


@app.get("/api/health")
async def health():
	logger = app.state.logger
	try:
		db_ok = await app.state.store.ping()
	except Exception:
		logger.exception("Health check: database unreachable")
		db_ok = False
	return {
		"service": "ok" if db_ok else "degraded",
		"database": db_ok,
		"apk": (config.DATA_ROOT_PATH / config.APK_FILENAME).is_file(),
		"content": (config.DATA_ROOT_PATH / config.CONTENT_FILENAME).is_file(),
	}


@app.get("/api/app-version")
async def app_version():
	logger = app.state.logger
	try:
		doc = await app.state.store.get_document(CONFIG_COLLECTION, VERSION_DOC_ID)
		if doc is None:
			return dict(DEFAULT_APP_VERSION)
		return doc
	except Exception:
		logger.exception("Error fetching app version")
		raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/user/{uid}/status")
async def user_status(uid: str):
	logger = app.state.logger
	try:
		doc = await app.state.store.get_document(USERS_COLLECTION, uid)
		if doc is None:
			return {"isBlocked": False}
		return {
			"isBlocked": bool(doc.get("isBlocked", False)),
			"blockedReason": doc.get("blockedReason") or "",
		}
	except Exception:
		logger.exception(f"Error checking status of user {uid}")
		raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/download/app", name="download_app")
async def download_app():
	apk_path = config.DATA_ROOT_PATH / config.APK_FILENAME
	if not apk_path.is_file():
		raise HTTPException(status_code=404, detail="APK not available yet")
	return FileResponse(
		apk_path,
		media_type="application/vnd.android.package-archive",
		filename=config.APK_DOWNLOAD_NAME,
	)


@app.get("/api/app-info")
async def app_info():
	logger = app.state.logger
	info = file_info(config.DATA_ROOT_PATH / config.APK_FILENAME)
	try:
		version = await app.state.store.get_document(CONFIG_COLLECTION, VERSION_DOC_ID) or {}
	except Exception:
		logger.exception("Error fetching app version for app-info")
		version = {}
	return {"available": info is not None, "file": info, "version": version}


@app.get("/api/content/version")
async def content_version():
	logger = app.state.logger
	try:
		return read_json(config.DATA_ROOT_PATH / config.CONTENT_VERSION_FILENAME) or default_content_stamp()
	except Exception:
		logger.exception("Error reading content version")
		raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/content/m3u")
async def content_file():
	content_path = config.DATA_ROOT_PATH / config.CONTENT_FILENAME
	if not content_path.is_file():
		raise HTTPException(status_code=404, detail="Content not available yet")
	return FileResponse(content_path, media_type="audio/x-mpegurl", filename=config.CONTENT_FILENAME)


@app.get("/api/content/info")
async def content_info():
	logger = app.state.logger
	info = file_info(config.DATA_ROOT_PATH / config.CONTENT_FILENAME)
	try:
		version = read_json(config.DATA_ROOT_PATH / config.CONTENT_VERSION_FILENAME) or {}
	except Exception:
		logger.exception("Error reading content version for content-info")
		version = {}
	return {"available": info is not None, "file": info, "version": version}


# ==========================================
# Admin routes
# ==========================================

@app.post("/api/admin/set-admins")
async def set_admins(body: SetAdminsRequest):
	logger = app.state.logger
	try:
		admins = await app.state.admins.replace_all(body.emails, body.masterKey)
		return {"success": True, "admins": admins}
	except InvalidMasterKey:
		logger.warning("set-admins called with an invalid master key")
		raise HTTPException(status_code=403, detail="Invalid master key")
	except Exception:
		logger.exception("Error replacing admin list")
		raise HTTPException(status_code=500, detail="Failed to update admins")


@app.get("/api/admin/users")
async def list_users(identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	try:
		provider_users, overlays = await asyncio.gather(
			app.state.identity.list_users(config.LIST_USERS_LIMIT),
			app.state.store.list_documents(USERS_COLLECTION),
		)
		users = [merge_user(u, overlays.get(u.uid)) for u in provider_users]
		return {"users": users, "total": len(users)}
	except Exception:
		logger.exception("Error listing users")
		raise HTTPException(status_code=500, detail="Failed to list users")


@app.put("/api/admin/users/{uid}/block")
async def block_user(uid: str, body: BlockRequest, identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	try:
		now = utcnow().isoformat()
		overlay = default_overlay()
		if body.block:
			overlay["isBlocked"] = True
			overlay["blockedReason"] = body.reason or "Blocked by administrator"
			overlay["blockedAt"] = now
		overlay["updatedAt"] = now
		await app.state.store.set_document(USERS_COLLECTION, uid, overlay, merge=True)
	except Exception:
		logger.exception(f"Error updating block state of user {uid}")
		raise HTTPException(status_code=500, detail="Failed to update user")

	await app.state.audit.append(
		AuditAction.BLOCK_USER if body.block else AuditAction.UNBLOCK_USER,
		identity.email,
		target=uid,
		payload={"reason": body.reason or ""},
	)
	logger.info(f"User {uid} {'blocked' if body.block else 'unblocked'} by {identity.email}")
	return {"success": True, "message": "User blocked" if body.block else "User unblocked"}


@app.post("/api/admin/app-update")
async def app_update(body: AppUpdateRequest, identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	try:
		await app.state.store.set_document(CONFIG_COLLECTION, VERSION_DOC_ID, {
			"minVersion": body.minVersion or "1.0.0",
			"forceUpdate": bool(body.forceUpdate),
			"updateMessage": body.updateMessage or "A new version is available!",
			"downloadUrl": body.downloadUrl or "",
			"updatedAt": utcnow().isoformat(),
			"updatedBy": identity.email,
		}, merge=True)
	except Exception:
		logger.exception("Error updating app version")
		raise HTTPException(status_code=500, detail="Failed to update version")

	await app.state.audit.append(
		AuditAction.UPDATE_APP_VERSION,
		identity.email,
		target=VERSION_DOC_ID,
		payload={"minVersion": body.minVersion, "forceUpdate": body.forceUpdate},
	)
	return {"success": True, "message": "Version updated"}


@app.post("/api/admin/upload-apk")
async def upload_apk(request: Request, identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	if content_length_exceeds(request.headers, config.MAX_APK_SIZE + config.UPLOAD_FORM_OVERHEAD):
		raise HTTPException(status_code=400, detail=f"File exceeds {format_size(config.MAX_APK_SIZE)}")
	try:
		async with request.form() as form:
			upload = form.get("apk")
			if not isinstance(upload, UploadFile):
				raise HTTPException(status_code=400, detail="No file uploaded")
			if not has_allowed_suffix(upload.filename, (".apk",)):
				raise HTTPException(status_code=400, detail="Only .apk files are allowed")
			version = form.get("version")
			version = version if isinstance(version, str) and version else "1.0.0"

			try:
				size = await save_upload(
					upload,
					config.DATA_ROOT_PATH / config.APK_FILENAME,
					config.MAX_APK_SIZE,
					config.UPLOAD_CHUNK_SIZE,
				)
			except UploadTooLarge as e:
				raise HTTPException(status_code=400, detail=str(e))

		size_formatted = format_size(size)
		download_url = str(request.url_for("download_app"))
		await app.state.store.set_document(CONFIG_COLLECTION, VERSION_DOC_ID, {
			"minVersion": version,
			"forceUpdate": True,
			"updateMessage": "New version available! Update now.",
			"downloadUrl": download_url,
			"fileSize": size,
			"fileSizeFormatted": size_formatted,
			"uploadedAt": utcnow().isoformat(),
			"uploadedBy": identity.email,
		}, merge=True)
	except StarletteHTTPException:
		raise
	except Exception:
		logger.exception("Error uploading APK")
		raise HTTPException(status_code=500, detail="Failed to upload APK")

	await app.state.audit.append(
		AuditAction.UPLOAD_APK,
		identity.email,
		target=config.APK_FILENAME,
		payload={"version": version, "fileSize": size_formatted},
	)
	logger.info(f"APK uploaded: {size_formatted} by {identity.email}")
	return {
		"success": True,
		"message": "APK uploaded",
		"file": {
			"size": size,
			"sizeFormatted": size_formatted,
			"downloadUrl": download_url,
		},
	}


@app.post("/api/admin/upload-content")
async def upload_content(request: Request, identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	if content_length_exceeds(request.headers, config.MAX_CONTENT_SIZE + config.UPLOAD_FORM_OVERHEAD):
		raise HTTPException(status_code=400, detail=f"File exceeds {format_size(config.MAX_CONTENT_SIZE)}")
	try:
		async with request.form() as form:
			upload = form.get("m3u")
			if not isinstance(upload, UploadFile):
				raise HTTPException(status_code=400, detail="No file uploaded")
			if not has_allowed_suffix(upload.filename, (".m3u", ".m3u8")):
				raise HTTPException(status_code=400, detail="Only .m3u or .m3u8 files are allowed")
			description = form.get("description")
			description = description if isinstance(description, str) else ""

			try:
				size = await save_upload(
					upload,
					config.DATA_ROOT_PATH / config.CONTENT_FILENAME,
					config.MAX_CONTENT_SIZE,
					config.UPLOAD_CHUNK_SIZE,
				)
			except UploadTooLarge as e:
				raise HTTPException(status_code=400, detail=str(e))

		stamp = build_content_stamp(size, description, utcnow())
		write_json(config.DATA_ROOT_PATH / config.CONTENT_VERSION_FILENAME, stamp)
	except StarletteHTTPException:
		raise
	except Exception:
		logger.exception("Error uploading content")
		raise HTTPException(status_code=500, detail="Failed to upload content")

	await app.state.audit.append(
		AuditAction.UPLOAD_CONTENT,
		identity.email,
		target=config.CONTENT_FILENAME,
		payload={"version": stamp["version"], "fileSize": format_size(size), "description": description},
	)
	logger.info(f"Content uploaded: {format_size(size)} version {stamp['version']} by {identity.email}")
	return {"success": True, "message": "Content uploaded", "version": stamp}


@app.get("/api/admin/stats")
async def stats(identity: Identity = Depends(require_admin)):
	logger = app.state.logger
	try:
		provider_users, blocked = await asyncio.gather(
			app.state.identity.list_users(config.LIST_USERS_LIMIT),
			app.state.store.query_documents(USERS_COLLECTION, "isBlocked", True),
		)
		return compute_stats(provider_users, set(blocked), utcnow(), config.RECENT_USER_DAYS)
	except Exception:
		logger.exception("Error computing stats")
		raise HTTPException(status_code=500, detail="Failed to fetch stats")
