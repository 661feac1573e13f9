"""Per-request context shared between middleware and logging."""

import contextvars

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="no-request-id")
