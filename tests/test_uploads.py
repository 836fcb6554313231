import asyncio

import config
import main
from admins import CONFIG_COLLECTION
from conftest import ADMIN_EMAIL, ADMIN_TOKEN, auth


APK_BYTES = b"PK\x03\x04" + b"\x00" * 2048


def upload_apk(client, data=APK_BYTES, filename="cineflow.apk", version="2.3.0"):
	return client.post(
		"/api/admin/upload-apk",
		files={"apk": (filename, data, "application/vnd.android.package-archive")},
		data={"version": version},
		headers=auth(ADMIN_TOKEN),
	)


def version_doc():
	return asyncio.run(main.app.state.store.get_document(CONFIG_COLLECTION, main.VERSION_DOC_ID))


def test_app_version_defaults(client):
	res = client.get("/api/app-version")
	assert res.json() == {"minVersion": "1.0.0", "forceUpdate": False, "updateMessage": "", "downloadUrl": ""}


def test_upload_apk_updates_version_config(client, audit_entries):
	res = upload_apk(client)

	assert res.status_code == 200
	body = res.json()
	assert body["file"]["size"] == len(APK_BYTES)
	assert body["file"]["downloadUrl"].endswith("/download/app")

	version = client.get("/api/app-version").json()
	assert version["minVersion"] == "2.3.0"
	assert version["forceUpdate"] is True
	assert version["downloadUrl"].endswith("/download/app")
	assert version["uploadedBy"] == ADMIN_EMAIL

	download = client.get("/download/app")
	assert download.status_code == 200
	assert download.content == APK_BYTES
	assert "CineFlow.apk" in download.headers["content-disposition"]

	entries = audit_entries()
	assert len(entries) == 1
	assert entries[0]["action"] == "UPLOAD_APK"
	assert entries[0]["actor_email"] == ADMIN_EMAIL
	assert entries[0]["payload"]["version"] == "2.3.0"


def test_upload_merges_with_previous_version_config(client):
	client.post(
		"/api/admin/app-update",
		json={"minVersion": "2.0.0", "updateMessage": "hello", "downloadUrl": "https://cdn.example.com/a.apk"},
		headers=auth(ADMIN_TOKEN),
	)
	upload_apk(client)

	doc = version_doc()
	assert doc["updatedBy"] == ADMIN_EMAIL
	assert doc["updatedAt"]
	assert doc["minVersion"] == "2.3.0"
	assert doc["fileSize"] == len(APK_BYTES)


def test_non_apk_upload_is_rejected_and_leaves_state(client, audit_entries):
	upload_apk(client, version="2.3.0")
	before = version_doc()

	res = upload_apk(client, data=b"not an apk", filename="notes.txt", version="9.9.9")

	assert res.status_code == 400
	assert res.json() == {"error": "Only .apk files are allowed"}
	assert version_doc() == before
	assert client.get("/download/app").content == APK_BYTES
	assert len(audit_entries()) == 1


def test_upload_without_file_is_bad_request(client):
	res = client.post("/api/admin/upload-apk", data={"version": "1.0.1"}, headers=auth(ADMIN_TOKEN))
	assert res.status_code == 400
	assert res.json() == {"error": "No file uploaded"}


def test_oversized_upload_keeps_previous_artifact(client, monkeypatch):
	upload_apk(client)
	before = version_doc()
	monkeypatch.setattr(config, "MAX_APK_SIZE", 1024)
	monkeypatch.setattr(config, "UPLOAD_CHUNK_SIZE", 256)

	res = upload_apk(client, data=b"x" * 4096, version="3.0.0")

	assert res.status_code == 400
	assert client.get("/download/app").content == APK_BYTES
	assert version_doc() == before
	leftovers = [p.name for p in config.DATA_ROOT_PATH.iterdir() if p.name.endswith(".part")]
	assert leftovers == []


def test_download_missing_artifact_is_not_found(client):
	res = client.get("/download/app")
	assert res.status_code == 404
	assert res.json() == {"error": "APK not available yet"}


def test_app_info(client):
	assert client.get("/api/app-info").json() == {"available": False, "file": None, "version": {}}

	upload_apk(client)
	info = client.get("/api/app-info").json()

	assert info["available"] is True
	assert info["file"]["size"] == len(APK_BYTES)
	assert info["file"]["sizeFormatted"] == "0.00 MB"
	assert info["version"]["minVersion"] == "2.3.0"


def test_app_update_defaults_and_audit(client, audit_entries):
	res = client.post("/api/admin/app-update", json={"minVersion": "1.4.0", "forceUpdate": True}, headers=auth(ADMIN_TOKEN))

	assert res.status_code == 200
	version = client.get("/api/app-version").json()
	assert version["minVersion"] == "1.4.0"
	assert version["forceUpdate"] is True
	assert version["updateMessage"] == "A new version is available!"
	assert version["downloadUrl"] == ""
	entries = audit_entries()
	assert [e["action"] for e in entries] == ["UPDATE_APP_VERSION"]
	assert entries[0]["payload"] == {"minVersion": "1.4.0", "forceUpdate": True}


def test_content_upload_and_public_endpoints(client, audit_entries):
	assert client.get("/api/content/m3u").status_code == 404
	assert client.get("/api/content/version").json()["version"] == "0"

	playlist = b"#EXTM3U\n#EXTINF:-1,News\nhttp://example.com/news.m3u8\n"
	res = client.post(
		"/api/admin/upload-content",
		files={"m3u": ("channels.m3u", playlist, "audio/x-mpegurl")},
		data={"description": "weekly refresh"},
		headers=auth(ADMIN_TOKEN),
	)

	assert res.status_code == 200
	stamp = client.get("/api/content/version").json()
	assert stamp["description"] == "weekly refresh"
	assert stamp["size"] == len(playlist)
	assert int(stamp["version"]) > 0
	assert client.get("/api/content/m3u").content == playlist
	info = client.get("/api/content/info").json()
	assert info["available"] is True
	assert info["version"] == stamp
	assert [e["action"] for e in audit_entries()] == ["UPLOAD_CONTENT"]


def test_content_stamp_is_replaced_not_merged(client):
	files = {"m3u": ("channels.m3u", b"#EXTM3U\n", "audio/x-mpegurl")}
	client.post("/api/admin/upload-content", files=files, data={"description": "first"}, headers=auth(ADMIN_TOKEN))
	files = {"m3u": ("channels.m3u8", b"#EXTM3U\n#2\n", "audio/x-mpegurl")}
	client.post("/api/admin/upload-content", files=files, headers=auth(ADMIN_TOKEN))

	stamp = client.get("/api/content/version").json()
	assert stamp["description"] == ""
	assert stamp["size"] == len(b"#EXTM3U\n#2\n")


def test_content_upload_rejects_other_files(client):
	res = client.post(
		"/api/admin/upload-content",
		files={"m3u": ("channels.csv", b"a,b", "text/csv")},
		headers=auth(ADMIN_TOKEN),
	)
	assert res.status_code == 400
	assert client.get("/api/content/m3u").status_code == 404


def test_malformed_multipart_is_bad_request(client, audit_entries):
	for path in ("/api/admin/upload-apk", "/api/admin/upload-content"):
		res = client.post(
			path,
			content=b"garbage",
			headers={**auth(ADMIN_TOKEN), "Content-Type": "multipart/form-data"},
		)
		assert res.status_code == 400, path
		assert set(res.json()) == {"error"}

	assert client.get("/download/app").status_code == 404
	assert client.get("/api/content/m3u").status_code == 404
	assert audit_entries() == []


def test_declared_size_over_limit_is_rejected_before_parsing(client, monkeypatch):
	upload_apk(client)
	before = version_doc()
	monkeypatch.setattr(config, "MAX_APK_SIZE", 1024)
	monkeypatch.setattr(config, "MAX_CONTENT_SIZE", 1024)
	monkeypatch.setattr(config, "UPLOAD_FORM_OVERHEAD", 0)

	res = upload_apk(client, data=b"x" * 4096, version="3.0.0")
	assert res.status_code == 400
	assert res.json() == {"error": "File exceeds 0.00 MB"}
	assert client.get("/download/app").content == APK_BYTES
	assert version_doc() == before

	res = client.post(
		"/api/admin/upload-content",
		files={"m3u": ("channels.m3u", b"#" * 4096, "audio/x-mpegurl")},
		headers=auth(ADMIN_TOKEN),
	)
	assert res.status_code == 400
	assert client.get("/api/content/m3u").status_code == 404


def test_size_check_runs_after_gateway(client, monkeypatch):
	monkeypatch.setattr(config, "MAX_APK_SIZE", 1024)
	monkeypatch.setattr(config, "UPLOAD_FORM_OVERHEAD", 0)

	res = client.post(
		"/api/admin/upload-apk",
		files={"apk": ("big.apk", b"x" * 4096, "application/vnd.android.package-archive")},
	)

	assert res.status_code == 401
