from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
principal_uid_var: ContextVar[str | None] = ContextVar("principal_uid", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_principal_uid(value: str | None) -> Token[str | None]:
    return principal_uid_var.set(value)


def get_principal_uid() -> str | None:
    return principal_uid_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "uid": get_principal_uid()}
