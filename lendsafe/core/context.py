import contextvars

_bank_id: contextvars.ContextVar[str] = contextvars.ContextVar("bank_id", default="-")
_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
_actor_id: contextvars.ContextVar[str] = contextvars.ContextVar("actor_id", default="-")


def set_bank_id(bank_id: str) -> None:
    _bank_id.set(bank_id)


def get_bank_id() -> str:
    return _bank_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def set_actor_id(actor_id: str) -> None:
    _actor_id.set(actor_id)


def get_actor_id() -> str:
    return _actor_id.get()


def clear_context() -> None:
    _bank_id.set("-")
    _request_id.set("-")
    _actor_id.set("-")
