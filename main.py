from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from pydantic import BaseModel, Field
import uvicorn

from config import load_settings
from dramabox import DramaBoxClient
from helpers import init_logger, format_response, utc_timestamp
from token_manager import MAX_TTL, TokenManager, TokenResult


@asynccontextmanager
async def lifespan(app: FastAPI):
	settings = load_settings()
	app.state.settings = settings
	app.state.logger = init_logger(settings.log_config)
	logger = app.state.logger

	if not settings.token_url:
		logger.warning("DRAMABOX_TOKEN_URL is not set, token fetches will fail")

	app.state.token_manager = TokenManager(
		settings.token_url,
		ttl=settings.token_ttl,
		timeout=settings.token_timeout,
		expiry_buffer=settings.expiry_buffer,
	)
	app.state.dramabox = DramaBoxClient(settings)
	logger.info(f"Upstream client ready for {settings.base_url}")

	yield

	await app.state.dramabox.aclose()
	logger.info("Application shutdown")


app = FastAPI(
	title="DramaBox API",
	version="1.0.0",
	description="Proxy for the DramaBox drama, chapter and search API",
	lifespan=lifespan,
)

app.add_middleware(
	CORSMiddleware,
	allow_origins=list(load_settings().allowed_origins),
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
	return JSONResponse(
		status_code=exc.status_code,
		content=format_response(False, error=str(exc.detail)),
	)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
	missing = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
	return JSONResponse(
		status_code=400,
		content=format_response(False, error=f"Invalid or missing parameters: {', '.join(missing)}"),
	)


def token_payload(result: TokenResult) -> dict:
	return {**result.credential.to_dict(), "type": "Bearer"}


async def require_credential():
	result = await app.state.token_manager.acquire()
	if not result.success:
		app.state.logger.warning(f"No credential available: {result.error}")
		raise HTTPException(status_code=401, detail="Authentication required")
	return result.credential


def unwrap_upstream(result: dict):
	if result.get("needRefresh"):
		raise HTTPException(status_code=401, detail=result["error"])
	if not result["success"]:
		status = result["status"] if result["status"] >= 400 else 502
		raise HTTPException(status_code=status, detail=result.get("error") or "Upstream request failed")
	return result["data"]


@app.get("/")
async def docs():
	return RedirectResponse(url="/docs", status_code=307)


@app.get("/health")
async def health():
	return {
		"status": "OK",
		"message": "DramaBox API is running",
		"timestamp": utc_timestamp(),
		"token": app.state.token_manager.info(),
	}


# --- token ---

class ValidateTokenBody(BaseModel):
	token: str
	deviceId: str | None = None
	expiresIn: float = Field(3600, gt=0, le=MAX_TTL, allow_inf_nan=False)


@app.get("/api/token")
async def get_token_info():
	logger = app.state.logger
	try:
		return format_response(True, app.state.token_manager.info(), "Token information retrieved successfully")
	except Exception:
		logger.exception("Error getting token info")
		raise HTTPException(status_code=500, detail="Failed to retrieve token information")


@app.post("/api/token")
async def get_token():
	logger = app.state.logger
	try:
		result = await app.state.token_manager.acquire()
		if not result.success:
			raise HTTPException(status_code=500, detail=str(result.error) or "Failed to retrieve token")
		return format_response(True, token_payload(result), "Token retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting token")
		raise HTTPException(status_code=500, detail="Failed to retrieve token")


@app.post("/api/token/refresh")
async def refresh_token():
	logger = app.state.logger
	try:
		result = await app.state.token_manager.acquire(force=True)
		if not result.success:
			raise HTTPException(status_code=500, detail=str(result.error) or "Token refresh failed")
		return format_response(True, token_payload(result), "Token refreshed successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error refreshing token")
		raise HTTPException(status_code=500, detail="Failed to refresh token")


@app.delete("/api/token")
async def clear_token():
	logger = app.state.logger
	try:
		app.state.token_manager.clear()
		return format_response(True, message="Token cleared successfully")
	except Exception:
		logger.exception("Error clearing token")
		raise HTTPException(status_code=500, detail="Failed to clear token")


@app.post("/api/token/validate")
async def validate_token(body: ValidateTokenBody):
	logger = app.state.logger
	manager = app.state.token_manager
	try:
		if not body.token:
			raise HTTPException(status_code=400, detail="Token is required")
		if body.deviceId:
			manager.set_token(body.token, body.deviceId, body.expiresIn)
		valid = manager.is_valid()
		return format_response(
			True,
			{"valid": valid, "tokenInfo": manager.info()},
			"Token is valid" if valid else "Token is invalid or expired",
		)
	except HTTPException:
		raise
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except Exception:
		logger.exception("Error validating token")
		raise HTTPException(status_code=500, detail="Failed to validate token")


# --- upstream pass-through ---

class StreamBody(BaseModel):
	quality: str = "hd"


async def latest_dramas(page: int, message: str) -> dict:
	credential = await require_credential()
	result = await app.state.dramabox.get_latest_dramas(credential, page=page)
	return format_response(True, unwrap_upstream(result), message)


async def chapters(book_id: str, page: int, message: str) -> dict:
	credential = await require_credential()
	result = await app.state.dramabox.get_chapters(credential, book_id, index=page)
	return format_response(True, unwrap_upstream(result), message)


@app.get("/api/drama")
async def get_drama_list(page: int = 1):
	logger = app.state.logger
	try:
		return await latest_dramas(page, "Drama list retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting drama list")
		raise HTTPException(status_code=500, detail="Failed to retrieve drama list")


@app.get("/api/drama/latest")
async def get_latest_dramas(page: int = 1):
	logger = app.state.logger
	try:
		return await latest_dramas(page, "Latest dramas retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting latest dramas")
		raise HTTPException(status_code=500, detail="Failed to retrieve latest dramas")


@app.get("/api/drama/{drama_id}/episodes")
async def get_drama_episodes(drama_id: str, page: int = 1):
	logger = app.state.logger
	try:
		return await chapters(drama_id, page, "Drama episodes retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting drama episodes")
		raise HTTPException(status_code=500, detail="Failed to retrieve drama episodes")


@app.get("/api/search")
async def search(q: str = ""):
	logger = app.state.logger
	try:
		if len(q.strip()) < 2:
			raise HTTPException(status_code=400, detail="Search query must be at least 2 characters long")
		credential = await require_credential()
		result = await app.state.dramabox.search(credential, q.strip())
		return format_response(True, unwrap_upstream(result), "Search completed successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error searching dramas")
		raise HTTPException(status_code=500, detail="Failed to search dramas")


@app.get("/api/chapter/{book_id}")
async def get_chapters(book_id: str, page: int = 1):
	logger = app.state.logger
	try:
		return await chapters(book_id, page, "Chapters retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting chapters")
		raise HTTPException(status_code=500, detail="Failed to retrieve chapters")


@app.post("/api/chapter/{book_id}/{chapter_id}/stream")
async def get_streaming_url(book_id: str, chapter_id: int, body: StreamBody | None = None):
	logger = app.state.logger
	try:
		credential = await require_credential()
		result = await app.state.dramabox.get_streaming_url(credential, book_id, chapter_id)
		data = {
			"bookId": book_id,
			"chapterId": chapter_id,
			"quality": (body or StreamBody()).quality,
			"upstream": unwrap_upstream(result),
		}
		return format_response(True, data, "Streaming URL retrieved successfully")
	except HTTPException:
		raise
	except Exception:
		logger.exception("Error getting streaming url")
		raise HTTPException(status_code=500, detail="Failed to retrieve streaming URL")


if __name__ == "__main__":
	settings = load_settings()
	uvicorn.run("main:app", host=settings.host, port=settings.port)
