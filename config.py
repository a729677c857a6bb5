import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


cwd = Path(__file__).parent

DRAMABOX_BASE_URL = "https://sapi.dramaboxdb.com/drama-box"


def _env_number(name: str, default, cast=float):
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		return cast(raw)
	except ValueError:
		raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
	raw = os.getenv(name)
	if not raw:
		return default
	return tuple(item.strip() for item in raw.split(",") if item.strip()) or default


@dataclass(frozen=True)
class Settings:
	token_url: str | None = None
	base_url: str = DRAMABOX_BASE_URL
	token_ttl: float = 3600
	token_timeout: float = 10
	expiry_buffer: float = 60
	upstream_timeout: float = 15
	version_code: str = "430"
	version_name: str = "4.3.0"
	cid: str = "DRA1000042"
	package_name: str = "com.storymatrix.drama"
	language: str = "in"
	platform: str = "43"
	log_config: Path = cwd / "logger_config.yaml"
	host: str = "0.0.0.0"
	port: int = 3000
	allowed_origins: tuple[str, ...] = ("*",)


def load_settings() -> Settings:
	"""
	Reads settings from the environment, after loading a .env file if one exists.
	An unset DRAMABOX_TOKEN_URL is allowed here; it only fails when a token is fetched.
	"""
	load_dotenv()
	return Settings(
		token_url=os.getenv("DRAMABOX_TOKEN_URL") or None,
		base_url=os.getenv("DRAMABOX_BASE_URL", DRAMABOX_BASE_URL),
		token_ttl=_env_number("DRAMABOX_TOKEN_TTL", 3600),
		token_timeout=_env_number("DRAMABOX_TOKEN_TIMEOUT", 10),
		expiry_buffer=_env_number("DRAMABOX_TOKEN_BUFFER", 60),
		upstream_timeout=_env_number("DRAMABOX_UPSTREAM_TIMEOUT", 15),
		version_code=os.getenv("DRAMABOX_VERSION_CODE", "430"),
		version_name=os.getenv("DRAMABOX_VERSION_NAME", "4.3.0"),
		cid=os.getenv("DRAMABOX_CID", "DRA1000042"),
		package_name=os.getenv("DRAMABOX_PACKAGE_NAME", "com.storymatrix.drama"),
		language=os.getenv("DRAMABOX_LANGUAGE", "in"),
		platform=os.getenv("DRAMABOX_PLATFORM_P", "43"),
		log_config=Path(os.getenv("LOG_CONFIG", str(cwd / "logger_config.yaml"))),
		host=os.getenv("HOST", "0.0.0.0"),
		port=_env_number("PORT", 3000, cast=int),
		allowed_origins=_env_list("ALLOWED_ORIGINS", ("*",)),
	)
