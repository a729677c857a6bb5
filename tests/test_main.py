import json
import logging

import httpx
import pytest
import pytest_asyncio

from config import Settings
from dramabox import DramaBoxClient
from main import app


class Upstream:
	def __init__(self):
		self.status_code = 200
		self.body = {"success": True, "data": {"suggestList": [{"bookId": "41000100"}]}}
		self.requests = []
		self.transport = httpx.MockTransport(self._handle)

	def _handle(self, request):
		self.requests.append(request)
		return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def upstream():
	return Upstream()


@pytest_asyncio.fixture
async def client(manager, upstream):
	settings = Settings(token_url="https://tokens.test/get-token", base_url="https://upstream.test/drama-box")
	app.state.settings = settings
	app.state.logger = logging.getLogger("dev")
	app.state.token_manager = manager
	app.state.dramabox = DramaBoxClient(settings, transport=upstream.transport)

	transport = httpx.ASGITransport(app=app)
	async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
		yield http

	await app.state.dramabox.aclose()


def assert_envelope(body, success):
	assert body["success"] is success
	assert body["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_token_info_before_fetch(client):
	response = await client.get("/api/token")

	assert response.status_code == 200
	body = response.json()
	assert_envelope(body, True)
	assert body["data"]["hasToken"] is False
	assert body["data"]["tokenPreview"] is None


@pytest.mark.asyncio
async def test_post_token_fetches_once(client, token_source):
	first = await client.post("/api/token")
	second = await client.post("/api/token")

	assert first.status_code == 200
	data = first.json()["data"]
	assert data["token"] == "T1"
	assert data["deviceId"] == "D1"
	assert data["type"] == "Bearer"
	assert second.json()["data"]["token"] == "T1"
	assert token_source.calls == 1


@pytest.mark.asyncio
async def test_refresh_forces_fetch(client, token_source):
	await client.post("/api/token")
	token_source.returns(json={"token": "T2", "deviceid": "D2"})

	response = await client.post("/api/token/refresh")

	assert response.status_code == 200
	assert response.json()["message"] == "Token refreshed successfully"
	assert response.json()["data"]["token"] == "T2"
	assert token_source.calls == 2


@pytest.mark.asyncio
async def test_failed_fetch_returns_error_envelope(client, token_source):
	token_source.returns(json={})

	response = await client.post("/api/token")

	assert response.status_code == 500
	body = response.json()
	assert_envelope(body, False)
	assert "missing token or deviceid" in body["error"]


@pytest.mark.asyncio
async def test_delete_clears_token(client, manager):
	manager.set_token("T0", "D0", 3600)

	response = await client.delete("/api/token")

	assert response.status_code == 200
	assert response.json()["message"] == "Token cleared successfully"
	assert manager.info()["hasToken"] is False


@pytest.mark.asyncio
async def test_validate_installs_token(client, manager):
	response = await client.post("/api/token/validate", json={"token": "V1", "deviceId": "VD1", "expiresIn": 120})

	assert response.status_code == 200
	data = response.json()["data"]
	assert data["valid"] is True
	assert data["tokenInfo"]["tokenPreview"] == "V1..."
	assert manager.credential.device_id == "VD1"


@pytest.mark.asyncio
async def test_validate_without_device_only_checks(client, manager):
	response = await client.post("/api/token/validate", json={"token": "V1"})

	assert response.status_code == 200
	assert response.json()["data"]["valid"] is False
	assert response.json()["message"] == "Token is invalid or expired"
	assert manager.credential is None


@pytest.mark.asyncio
async def test_validate_requires_token(client):
	response = await client.post("/api/token/validate", json={})

	assert response.status_code == 400
	assert_envelope(response.json(), False)


@pytest.mark.asyncio
async def test_search_passes_upstream_data_through(client, upstream):
	response = await client.get("/api/search", params={"q": "ceo"})

	assert response.status_code == 200
	body = response.json()
	assert_envelope(body, True)
	assert body["data"] == upstream.body
	assert upstream.requests[0].headers["tn"] == "Bearer T1"


@pytest.mark.asyncio
async def test_search_requires_query(client, upstream):
	response = await client.get("/api/search")

	assert response.status_code == 400
	assert upstream.requests == []


@pytest.mark.asyncio
async def test_upstream_routes_need_a_token(client, token_source, upstream):
	token_source.fails_with(httpx.ConnectError)

	response = await client.get("/api/drama")

	assert response.status_code == 401
	assert response.json()["error"] == "Authentication required"
	assert upstream.requests == []


@pytest.mark.asyncio
async def test_rejected_token_maps_to_401(client, upstream):
	upstream.status_code = 403

	response = await client.get("/api/chapter/41000100", params={"page": 2})

	assert response.status_code == 401
	assert response.json()["error"] == "Token expired, please refresh"


@pytest.mark.asyncio
async def test_search_rejects_one_letter_query(client, upstream):
	response = await client.get("/api/search", params={"q": " c "})

	assert response.status_code == 400
	assert "at least 2 characters" in response.json()["error"]
	assert upstream.requests == []


@pytest.mark.asyncio
async def test_chapter_page_is_sent_as_index(client, upstream):
	response = await client.get("/api/chapter/41000100", params={"page": 4})

	assert response.status_code == 200
	payload = json.loads(upstream.requests[0].content)
	assert payload["bookId"] == "41000100"
	assert payload["index"] == 4


@pytest.mark.asyncio
async def test_stream_route_calls_batch_load(client, upstream):
	response = await client.post("/api/chapter/41000100/7/stream", json={"quality": "fhd"})

	assert response.status_code == 200
	data = response.json()["data"]
	assert data["chapterId"] == 7
	assert data["quality"] == "fhd"
	assert data["upstream"] == upstream.body
	assert upstream.requests[0].url.path == "/drama-box/chapterv2/batch/load"
	assert json.loads(upstream.requests[0].content)["index"] == 7


@pytest.mark.asyncio
async def test_stream_route_defaults_quality(client, upstream):
	response = await client.post("/api/chapter/41000100/1/stream")

	assert response.status_code == 200
	assert response.json()["data"]["quality"] == "hd"


@pytest.mark.asyncio
async def test_latest_dramas_route(client, upstream):
	response = await client.get("/api/drama/latest", params={"page": 3})

	assert response.status_code == 200
	assert response.json()["message"] == "Latest dramas retrieved successfully"
	assert upstream.requests[0].url.path == "/drama-box/he001/theater"
	assert json.loads(upstream.requests[0].content)["pageNo"] == 3


@pytest.mark.asyncio
async def test_drama_episodes_route(client, upstream):
	response = await client.get("/api/drama/41000100/episodes", params={"page": 2})

	assert response.status_code == 200
	assert response.json()["data"] == upstream.body
	payload = json.loads(upstream.requests[0].content)
	assert payload["bookId"] == "41000100"
	assert payload["index"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("expires_in", [1e12, 0, -5])
async def test_validate_rejects_unusable_lifetime(client, manager, expires_in):
	response = await client.post(
		"/api/token/validate",
		json={"token": "V1", "deviceId": "D", "expiresIn": expires_in},
	)

	assert response.status_code == 400
	assert manager.credential is None
	assert (await client.get("/api/token")).status_code == 200
	assert (await client.get("/health")).status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight_is_answered(client):
	response = await client.options(
		"/api/search",
		headers={"Origin": "http://localhost:5500", "Access-Control-Request-Method": "GET"},
	)

	assert response.status_code == 200
	assert response.headers["access-control-allow-origin"] in ("*", "http://localhost:5500")


@pytest.mark.asyncio
async def test_health_reports_token_state(client):
	response = await client.get("/health")

	assert response.status_code == 200
	body = response.json()
	assert body["status"] == "OK"
	assert body["token"]["isValid"] is False


@pytest.mark.asyncio
async def test_unknown_route_uses_envelope(client):
	response = await client.get("/api/nope")

	assert response.status_code == 404
	assert_envelope(response.json(), False)
