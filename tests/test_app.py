import config


def test_health(client):
	res = client.get("/api/health")
	assert res.status_code == 200
	assert res.json() == {"service": "ok", "database": True, "apk": False, "content": False}


def test_index_without_admin_panel(client):
	res = client.get("/")
	assert res.status_code == 404
	assert res.json() == {"error": "Admin panel not installed"}


def test_index_serves_admin_panel(client):
	config.PUBLIC_DIR.mkdir(parents=True)
	(config.PUBLIC_DIR / "index.html").write_text("<h1>CineFlow</h1>")

	res = client.get("/")

	assert res.status_code == 200
	assert "CineFlow" in res.text


def test_unknown_route_uses_error_payload(client):
	res = client.get("/api/nope")
	assert res.status_code == 404
	assert res.json() == {"error": "Not Found"}
