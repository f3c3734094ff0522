"""Print the effective relay and logging configuration as JSON.

Secrets are masked; handy when debugging a deployment's environment.
"""

import dataclasses
import json
import logging
import os
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from relay.core.config import get_settings

MASKED = {"api_key", "events_token", "database_url"}


def get_log_config():
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    return {
        "log_dir": os.path.abspath(os.getenv("LOG_DIR", "logs")),
        "log_level": logging.getLevelName(log_level),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
        "log_stdout": os.getenv("LOG_STDOUT", "false").lower() == "true",
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "rotate_utc": os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    }


def _mask(data):
    if isinstance(data, dict):
        return {k: ("***" if k in MASKED and v else _mask(v)) for k, v in data.items()}
    return data


def get_relay_config():
    return _mask(dataclasses.asdict(get_settings()))


def main():
    config = {"logging": get_log_config()}
    try:
        config["relay"] = get_relay_config()
    except RuntimeError as exc:
        config["relay"] = {"error": str(exc)}
    sys.stdout.write(json.dumps(config, indent=2) + "\n")


if __name__ == "__main__":
    main()
