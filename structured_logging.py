"""
Structured Logging

JSON log formatting shared by the batch runner, the CLI and the report API.
Provides a consistent log format for aggregation and analysis across runs.
"""

import json
import logging
from datetime import datetime, timezone

# Optional context attributes passed through `extra=`
CONTEXT_FIELDS = ("request_id", "layer_id", "criterion", "run_timestamp", "duration_ms")


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON logging formatter.
    One JSON object per record with optional pipeline context fields.
    """

    def __init__(self, service: str = "layer-quality"):
        super().__init__()
        self.service = service

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        # Add error details if exception
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(service: str, level: str = "INFO") -> logging.Logger:
    """Attach a structured handler to the root logger (idempotent)"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers
    if not any(isinstance(h.formatter, StructuredFormatter) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter(service))
        root.addHandler(handler)

    return logging.getLogger(service)
