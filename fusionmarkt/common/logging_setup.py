import logging
import re
import sys
from logging.handlers import QueueHandler, QueueListener
from queue import SimpleQueue
from typing import Any, Dict, Optional
import orjson
from fusionmarkt.common.context import request_id_ctx
from fusionmarkt.config.settings import config_settings

DEV_FORMAT = "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s %(request_id)s"

# extra keys whose values never reach the log sink outside dev
SECRET_KEYS = frozenset({
    "password", "password_hash", "token", "access_token", "secret", "api_key",
    "authorization", "card_number", "cardnumber", "cvc", "identity_number", "identitynumber",
})
PERSONAL_KEYS = frozenset({"email", "customer_email", "to"})

# 13-19 digit runs are treated as card numbers wherever they appear in a message
PAN_RE = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_listener: Optional[QueueListener] = None


def mask_email(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return email
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"


def scrub(key: str, value: Any) -> Any:
    lowered = key.lower()
    if lowered in SECRET_KEYS:
        return "[REDACTED]"
    if lowered in PERSONAL_KEYS and isinstance(value, str):
        return mask_email(value)
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_ctx.get() or ""
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; personal and secret fields are scrubbed."""

    def __init__(self, env: str, service: str):
        super().__init__()
        self.env = env
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "event": PAN_RE.sub("[CARD]", record.getMessage()),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "env": self.env,
            "service": self.service,
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_") or key in entry:
                continue
            entry[key] = scrub(key, value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str, option=orjson.OPT_NON_STR_KEYS).decode()


def _console_handler(settings) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if settings.ENV == "dev":
        handler.setFormatter(logging.Formatter(DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(JSONFormatter(settings.ENV, settings.SERVICE_NAME))
    return handler


def setup_logging(settings=config_settings) -> None:
    """Route every record through a queue so request handlers never block on stdout."""
    global _listener
    stop_logging()

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    queue: SimpleQueue = SimpleQueue()
    queue_handler = QueueHandler(queue)
    queue_handler.addFilter(RequestIdFilter())
    root.addHandler(queue_handler)
    root.setLevel(settings.LOG_LEVEL or ("DEBUG" if settings.ENV == "dev" else "INFO"))

    _listener = QueueListener(queue, _console_handler(settings), respect_handler_level=True)
    _listener.start()

    for noisy in ("sqlalchemy.engine", "httpx", "httpcore", "passlib"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def stop_logging() -> None:
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


class ContextLogger(logging.LoggerAdapter):
    """Adds the current request id to ``extra`` of every call."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str = "fusionmarkt.app") -> ContextLogger:
    return ContextLogger(logging.getLogger(name))
