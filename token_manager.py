"""
Token lifecycle for the DramaBox upstream.

One TokenManager owns the bearer credential (token + device id + expiry) for the
whole service. Concurrent callers of acquire() that find no usable credential
share a single fetch against the configured token URL.
"""
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import httpx

logger = logging.getLogger("dev.token")

USER_AGENT = "DramaBox-API-Client/1.0.0"
PREVIEW_LENGTH = 20
# upper bound for a manually installed token, keeps expires_at a representable date
MAX_TTL = 10 * 365 * 24 * 3600


class TokenError(Exception):
	"""Base class for failures while obtaining a credential."""


class ConfigurationError(TokenError):
	"""The token source URL is missing or malformed."""


class TransportError(TokenError):
	"""The token source could not be reached, timed out, or answered with an error status."""


class ValidationError(TokenError):
	"""The token source answered, but without a usable token and deviceid."""


class RevokedError(TokenError):
	"""The credential was cleared while the fetch was in flight."""


def _isoformat(epoch: float) -> str:
	return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Credential:
	token: str
	device_id: str
	expires_at: float

	def to_dict(self) -> dict:
		return {
			"token": self.token,
			"deviceId": self.device_id,
			"expiresAt": _isoformat(self.expires_at),
		}


@dataclass(frozen=True)
class TokenResult:
	credential: Credential | None = None
	error: TokenError | None = None

	@property
	def success(self) -> bool:
		return self.error is None and self.credential is not None


class TokenManager:
	"""
	Caches a single credential and refreshes it on demand.

	The stored Credential is immutable and swapped by reference, so readers never
	see a token paired with another token's expiry. The pending fetch and the
	stored credential are only changed under self._lock (acquire / fetch
	completion) or from synchronous methods, which cannot interleave with a
	coroutine on the same event loop.
	"""

	def __init__(
		self,
		token_url: str | None,
		ttl: float = 3600,
		timeout: float = 10,
		expiry_buffer: float = 60,
		clock: Callable[[], float] = time.time,
		transport: httpx.AsyncBaseTransport | None = None,
	):
		self.token_url = token_url
		self.ttl = ttl
		self.timeout = timeout
		self.expiry_buffer = expiry_buffer
		self._clock = clock
		self._transport = transport
		self._credential: Credential | None = None
		self._pending: asyncio.Task | None = None
		self._generation = 0
		self._lock = asyncio.Lock()

	@property
	def credential(self) -> Credential | None:
		return self._credential

	def _is_fresh(self, credential: Credential | None) -> bool:
		if credential is None:
			return False
		return self._clock() < credential.expires_at - self.expiry_buffer

	def is_valid(self) -> bool:
		return self._is_fresh(self._credential)

	async def acquire(self, force: bool = False) -> TokenResult:
		"""
		Returns the stored credential when it is still fresh, otherwise waits for a fetch.

		If a fetch is already running, the caller waits on it instead of starting
		another one, even when force is set. The result is never raised: failures
		come back as TokenResult.error and are the same object for every waiter.
		"""
		credential = self._credential
		if not force and self._is_fresh(credential):
			return TokenResult(credential=credential)

		async with self._lock:
			credential = self._credential
			if not force and self._is_fresh(credential):
				return TokenResult(credential=credential)
			if self._pending is None:
				self._pending = asyncio.create_task(self._refresh(self._generation))
			else:
				logger.debug("Joining in-flight token fetch")
			pending = self._pending

		# shield: a cancelled waiter must not cancel the fetch the others wait on
		return await asyncio.shield(pending)

	async def _refresh(self, generation: int) -> TokenResult:
		result = None
		try:
			try:
				credential = await self._fetch()
			except TokenError as e:
				logger.error(f"Token fetch failed: {e}")
				result = TokenResult(error=e)
			except Exception as e:
				logger.exception("Unexpected error while fetching token")
				result = TokenResult(error=TokenError(f"Failed to fetch token: {e}"))
			else:
				result = TokenResult(credential=credential)
		finally:
			async with self._lock:
				self._pending = None
				if result is not None and result.success:
					if generation == self._generation:
						self._credential = result.credential
						logger.info(
							f"Token refreshed ({self._preview(result.credential.token)}), "
							f"expires at {_isoformat(result.credential.expires_at)}"
						)
					elif self._credential is not None:
						logger.info("Token was replaced during fetch, discarding fetched token")
						result = TokenResult(credential=self._credential)
					else:
						logger.info("Token was cleared during fetch, discarding fetched token")
						result = TokenResult(error=RevokedError("Token was cleared while it was being fetched"))
		return result

	async def _fetch(self) -> Credential:
		if not self.token_url:
			raise ConfigurationError("DRAMABOX_TOKEN_URL environment variable is not set")

		logger.info(f"Fetching new token from: {self.token_url}")
		try:
			async with httpx.AsyncClient(
				timeout=self.timeout,
				headers={"User-Agent": USER_AGENT},
				transport=self._transport,
			) as client:
				response = await client.get(self.token_url)
				response.raise_for_status()
		except httpx.InvalidURL as e:
			raise ConfigurationError(f"DRAMABOX_TOKEN_URL is not a valid URL: {e}") from e
		except httpx.HTTPError as e:
			raise TransportError(f"Failed to fetch token: {e}") from e

		try:
			data = response.json()
		except ValueError as e:
			raise ValidationError("Invalid token response: body is not JSON") from e

		if not isinstance(data, dict) or not data.get("token") or not data.get("deviceid"):
			raise ValidationError("Invalid token response: missing token or deviceid")

		return Credential(
			token=str(data["token"]),
			device_id=str(data["deviceid"]),
			expires_at=self._clock() + self.ttl,
		)

	def set_token(self, token: str, device_id: str, ttl: float = 3600) -> Credential:
		"""Installs a credential directly, bypassing the token URL. A fetch still in flight will not overwrite it."""
		if not token or not device_id:
			raise ValueError("token and device_id are both required")
		if not (isinstance(ttl, (int, float)) and math.isfinite(ttl) and 0 < ttl <= MAX_TTL):
			raise ValueError(f"ttl must be a number of seconds between 0 and {MAX_TTL}, got {ttl!r}")
		credential = Credential(token=token, device_id=device_id, expires_at=self._clock() + ttl)
		self._generation += 1
		self._credential = credential
		logger.info(f"Token set manually ({self._preview(token)})")
		return credential

	def clear(self) -> None:
		self._generation += 1
		self._credential = None
		logger.info("Token cleared")

	def info(self) -> dict:
		credential = self._credential
		return {
			"hasToken": credential is not None,
			"hasDeviceId": credential is not None,
			"isValid": self._is_fresh(credential),
			"expiresAt": _isoformat(credential.expires_at) if credential else None,
			"tokenPreview": self._preview(credential.token) if credential else None,
		}

	@staticmethod
	def _preview(token: str) -> str:
		return f"{token[:PREVIEW_LENGTH]}..."
