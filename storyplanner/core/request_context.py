import contextvars
from contextlib import contextmanager

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)
operation_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("operation", default=None)
item_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("item_id", default=None)


def set_request_id(request_id: str) -> contextvars.Token:
    """Store the current request ID in a context variable."""
    return request_id_var.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    """Reset the request ID context variable to a previous state."""
    request_id_var.reset(token)


def get_request_id() -> str | None:
    """Retrieve the current request ID from the context."""
    return request_id_var.get()


def get_operation() -> str | None:
    """Retrieve the current orchestration operation for logging."""
    return operation_var.get()


def get_item_id() -> str | None:
    """Retrieve the shot id or character name being worked on."""
    return item_id_var.get()


@contextmanager
def log_context(operation: str | None = None, item_id: str | None = None):
    """Temporarily scope operation/item context for structured logs.

    asyncio tasks copy the current context when created, so a scope opened
    inside a per-item task never leaks into sibling tasks.
    """
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token]] = []
    if operation is not None:
        tokens.append((operation_var, operation_var.set(operation)))
    if item_id is not None:
        tokens.append((item_id_var, item_id_var.set(str(item_id))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
