from contextvars import ContextVar
from contextlib import contextmanager


request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
job_run_id_var: ContextVar[str | None] = ContextVar("job_run_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


@contextmanager
def job_run_context(run_id: int | str | None):
    token = job_run_id_var.set(str(run_id) if run_id is not None else None)
    try:
        yield
    finally:
        job_run_id_var.reset(token)


@contextmanager
def user_context(user_id: int | str | None):
    token = user_id_var.set(str(user_id) if user_id is not None else None)
    try:
        yield
    finally:
        user_id_var.reset(token)


def current_context() -> dict:
    """Context ids that are set right now, for tagging logs and error events."""
    values = {
        "request_id": request_id_var.get(),
        "job_run_id": job_run_id_var.get(),
        "user_id": user_id_var.get(),
    }
    return {k: v for k, v in values.items() if v is not None}
