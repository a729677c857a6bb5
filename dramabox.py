import logging

import httpx

from config import Settings
from helpers import get_time_zone_offset
from token_manager import Credential

logger = logging.getLogger("dev.dramabox")

DEFAULT_HEADERS = {
	"User-Agent": "okhttp/4.10.0",
	"Accept-Encoding": "gzip",
	"Content-Type": "application/json; charset=UTF-8",
}


class DramaBoxClient:
	"""
	Thin async client for the DramaBox API.

	The credential is passed in on every call and turned into request headers;
	nothing about it is kept on the underlying httpx client.
	"""

	def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
		self.settings = settings
		self._client = httpx.AsyncClient(
			base_url=settings.base_url,
			timeout=settings.upstream_timeout,
			headers=DEFAULT_HEADERS,
			transport=transport,
		)

	def build_headers(self, credential: Credential) -> dict:
		s = self.settings
		return {
			"tn": f"Bearer {credential.token}",
			"version": s.version_code,
			"vn": s.version_name,
			"cid": s.cid,
			"package-name": s.package_name,
			"apn": "1",
			"device-id": credential.device_id,
			"language": s.language,
			"current-language": s.language,
			"p": s.platform,
			"time-zone": get_time_zone_offset(),
		}

	async def request(
		self,
		method: str,
		endpoint: str,
		credential: Credential,
		payload: dict | None = None,
		params: dict | None = None,
	) -> dict:
		"""
		Sends one request and reports the outcome as a dict instead of raising.
		Returns {"success", "status", "data"} or {"success": False, "status", "error"};
		401/403 also carry "needRefresh": True so the caller can refresh the token.
		"""
		try:
			response = await self._client.request(
				method,
				endpoint,
				json=payload,
				params=params,
				headers=self.build_headers(credential),
			)
		except httpx.HTTPError as e:
			logger.error(f"API Request Error ({method} {endpoint}): {e}")
			return {"success": False, "status": 500, "error": str(e), "data": None}

		if response.status_code in (401, 403):
			logger.warning(f"Upstream rejected token ({response.status_code}) for {endpoint}")
			return {
				"success": False,
				"status": response.status_code,
				"error": "Token expired, please refresh",
				"needRefresh": True,
			}

		try:
			data = response.json()
		except ValueError:
			data = None

		result = {
			"success": 200 <= response.status_code < 300,
			"status": response.status_code,
			"data": data,
		}
		if not result["success"]:
			result["error"] = f"Upstream responded with status {response.status_code}"
		elif data is None:
			result["success"] = False
			result["error"] = "Upstream response is not JSON"
		return result

	async def search(self, credential: Credential, keyword: str) -> dict:
		return await self.request("POST", "/search/suggest", credential, payload={"keyword": keyword})

	async def get_chapters(self, credential: Credential, book_id: str, index: int = 1) -> dict:
		payload = {
			"boundaryIndex": 0,
			"comingPlaySectionId": -1,
			"index": index,
			"currencyPlaySource": "discover_new_rec_new",
			"needEndRecommend": 0,
			"currencyPlaySourceName": "",
			"preLoad": False,
			"rid": "",
			"pullCid": "",
			"loadDirection": 0,
			"startUpKey": "",
			"bookId": book_id,
		}
		return await self.request("POST", "/chapterv2/batch/load", credential, payload=payload)

	async def get_streaming_url(self, credential: Credential, book_id: str, index: int) -> dict:
		# batch load returns the stream URLs alongside the chapter list
		return await self.get_chapters(credential, book_id, index)

	async def get_latest_dramas(self, credential: Credential, page: int = 1) -> dict:
		payload = {
			"newChannelStyle": 1,
			"isNeedRank": 1,
			"pageNo": page,
			"index": 1,
			"channelId": int(self.settings.platform),
		}
		return await self.request("POST", "/he001/theater", credential, payload=payload)

	async def aclose(self) -> None:
		await self._client.aclose()
