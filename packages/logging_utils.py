import logging
import os

from .request_context import job_run_id_var, request_id_var, user_id_var

_CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("job_run_id", job_run_id_var),
    ("user_id", user_id_var),
)


def _stamp(record: logging.LogRecord) -> None:
    for field, var in _CONTEXT_FIELDS:
        if not hasattr(record, field):
            setattr(record, field, var.get() or "-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for field, var in _CONTEXT_FIELDS:
            setattr(record, field, var.get() or "-")
        return True


class SafeFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        _stamp(record)
        return super().format(record)


def setup_logging() -> None:
    level = os.getenv("TRAINING_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    # Every LogRecord carries the context fields so formatters never fail.
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        _stamp(record)
        return record

    logging.setLogRecordFactory(record_factory)

    log_format = (
        "%(asctime)s %(levelname)s %(name)s "
        "request_id=%(request_id)s job_run_id=%(job_run_id)s user_id=%(user_id)s %(message)s"
    )
    logging.basicConfig(level=level, format=log_format)
    # DuplicateAmbiguityWarning and friends go through warnings.warn.
    logging.captureWarnings(True)

    root = logging.getLogger()
    root.addFilter(ContextFilter())

    formatter = SafeFormatter(log_format)
    for handler in root.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
