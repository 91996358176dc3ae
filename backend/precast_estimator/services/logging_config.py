"""
Structured logging for the precast quotation service.

One JSON object per record. Besides the standard fields, records can carry
quotation context passed through ``extra=``:

  quotation_id   quotation (or request id) the line belongs to
  stage          pipeline stage: validation, pricing, freight, assembly
  error_code     QuoteEngineError.code of a rejected calculation
  duration_ms    elapsed time of the request, stage or timed function

plus the request fields written by RequestTimingMiddleware and the function
fields written by perf_monitor.timed. Anything else in ``extra`` is dropped.
"""
import logging
import json
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    "quotation_id",
    "request_id",
    "stage",
    "error_code",
    "duration_ms",
    "http_method",
    "http_path",
    "http_status",
    "function_name",
    "function_module",
)


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Configure application logging (LOG_LEVEL / LOG_FORMAT at app start)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # Suppress noisy loggers
    for name in ["uvicorn.access", "httpcore", "httpx"]:
        logging.getLogger(name).setLevel(logging.WARNING)
