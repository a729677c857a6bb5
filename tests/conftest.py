import asyncio

import httpx
import pytest

from token_manager import TokenManager

TOKEN_URL = "https://tokens.test/get-token"


class FakeClock:
	def __init__(self, now: float = 1_700_000_000.0):
		self.now = now

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


class TokenSource:
	"""Token endpoint on an httpx MockTransport that counts requests and can be held open."""

	def __init__(self):
		self.calls = 0
		self.started = asyncio.Event()
		self.gate: asyncio.Event | None = None
		self.respond = lambda request: httpx.Response(200, json={"token": "T1", "deviceid": "D1"})
		self.transport = httpx.MockTransport(self._handle)

	async def _handle(self, request: httpx.Request) -> httpx.Response:
		self.calls += 1
		self.started.set()
		if self.gate is not None:
			await self.gate.wait()
		return self.respond(request)

	def returns(self, status_code: int = 200, **kwargs) -> None:
		self.respond = lambda request: httpx.Response(status_code, **kwargs)

	def fails_with(self, exc_type) -> None:
		def respond(request):
			raise exc_type("token source unavailable", request=request)
		self.respond = respond

	def hold(self) -> asyncio.Event:
		self.gate = asyncio.Event()
		return self.gate


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def token_source():
	return TokenSource()


@pytest.fixture
def manager(clock, token_source):
	return TokenManager(
		TOKEN_URL,
		ttl=3600,
		timeout=10,
		expiry_buffer=60,
		clock=clock,
		transport=token_source.transport,
	)
