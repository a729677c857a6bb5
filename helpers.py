# Helper functions for initialization and response formatting
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path

import yaml


def init_logger(config_path: Path) -> logging.Logger:
	try:
		with open(config_path, "r") as f:
			config = yaml.safe_load(f)
		logging.config.dictConfig(config)
		logger = logging.getLogger("dev")
		logger.debug("Logger configured")
		return logger
	except Exception as e:
		logging.basicConfig(level=logging.INFO)
		logger = logging.getLogger("dev")
		logger.error(f"Logger initialization failed: {e}")
		return logger


def utc_timestamp(when: datetime | None = None) -> str:
	when = when or datetime.now(timezone.utc)
	return when.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_response(success: bool, data=None, message: str | None = None, error: str | None = None) -> dict:
	"""
	Builds the response envelope shared by every API route.
	Keys whose value is None are left out.
	"""
	response = {
		"success": success,
		"timestamp": utc_timestamp(),
	}
	if data is not None:
		response["data"] = data
	if message is not None:
		response["message"] = message
	if error is not None:
		response["error"] = error
	return response


def get_time_zone_offset(now: datetime | None = None) -> str:
	"""Returns the local UTC offset formatted the way the upstream expects, e.g. "+0700"."""
	now = now or datetime.now().astimezone()
	offset = now.utcoffset()
	minutes = int(offset.total_seconds() // 60) if offset else 0
	sign = "-" if minutes < 0 else "+"
	hours, mins = divmod(abs(minutes), 60)
	return f"{sign}{hours:02d}{mins:02d}"
