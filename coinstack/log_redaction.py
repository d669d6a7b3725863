"""Secret redaction for log output.

Provides:
  - ``redact_secrets(msg)``          — strip API keys from a string
  - ``LogRedactionFilter``           — ``logging.Filter`` that auto-redacts
  - ``apply_global_log_redaction()`` — attach the filter to the root handlers

Adapters already sanitise the URLs they log; this filter is the last
line for anything that slips through (httpx debug logs, tracebacks).

Usage::

    from coinstack.log_redaction import apply_global_log_redaction
    apply_global_log_redaction()  # call once after logging.basicConfig
"""
from __future__ import annotations

import logging
import re

# ---------------------------------------------------------------------------
# Sensitive patterns (name, compiled regex)
# ---------------------------------------------------------------------------
_SENSITIVE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Query-string keys: x_cg_demo_api_key=…, x_cg_pro_api_key=…, apiKey=…
    (
        "query_key",
        re.compile(r"((?:x_cg_(?:demo|pro)_)?api[_-]?key=)[^&\s\"']+", re.IGNORECASE),
    ),
    # Header / assignment style: "api_key: …", "token=…", "secret=…"
    (
        "api_token",
        re.compile(r"((?:api[_-]?key|token|secret)\s*[:=]\s*[\"']?)[^\s&'\"]+", re.IGNORECASE),
    ),
    # CoinGecko demo keys ("CG-" + 20+ chars), even when bare
    ("coingecko_key", re.compile(r"\bCG-[A-Za-z0-9]{20,}\b")),
    # Authorization / Bearer headers
    (
        "auth_header",
        re.compile(
            r"((?:Authorization\s*[:=]\s*)?Bearer\s+|Authorization\s*[:=]\s*)\S+",
            re.IGNORECASE,
        ),
    ),
]

_REPLACEMENT = "***REDACTED***"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def redact_secrets(msg: str, replacement: str = _REPLACEMENT) -> str:
    """Return *msg* with all recognised secret patterns replaced.

    For ``name=value`` patterns the name is kept so the log line still
    says which parameter was present.
    """
    if not msg:
        return msg
    result = msg
    for _name, pattern in _SENSITIVE_PATTERNS:
        if pattern.groups:
            result = pattern.sub(lambda m: m.group(1) + replacement, result)
        else:
            result = pattern.sub(replacement, result)
    return result


class LogRedactionFilter(logging.Filter):
    """Logging filter that redacts secrets in the message and its args.

    Attach to a handler (not a logger) so records propagated from child
    loggers are covered too::

        handler.addFilter(LogRedactionFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_secrets(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_secrets(v) if isinstance(v, str) else v
                    for v in record.args
                )
        return True


def apply_global_log_redaction() -> None:
    """Attach :class:`LogRedactionFilter` to the **root** logger's handlers."""
    filt = LogRedactionFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(filt)
