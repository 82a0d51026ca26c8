"""
Custom logging configuration that keeps credentials out of log output
"""

import logging
import logging.config
import re
from typing import Dict, Any

# Compact JWS: three base64url segments
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]*")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[^\s'\"]+")


def redact(text: str) -> str:
    """Mask bearer tokens and JWTs in *text*."""
    text = _BEARER_PATTERN.sub(r"\1[REDACTED]", text)
    return _JWT_PATTERN.sub("[REDACTED-JWT]", text)


class TokenRedactionFilter(logging.Filter):
    """Filter that masks bearer credentials in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Rewrite the record message with credentials redacted."""
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True  # Never drop records, only rewrite them


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration with credential redaction."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "token_redaction_filter": {
                "()": TokenRedactionFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["token_redaction_filter"]
            }
        },
        "loggers": {
            "iotaccess": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "httpx": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            },
            "paho": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            },
            "uvicorn": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False
            }
        },
        "root": {
            "level": "WARNING",
            "handlers": ["default"]
        }
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(level.upper()))
