import logging
import traceback

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def log_exc(log: logging.Logger, context: str, exc: BaseException) -> None:
    """Full traceback goes to the server log only; callers get str(exc)."""
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    log.error(f"[EXCEPTION] {context} :: {exc.__class__.__name__}: {exc}\n{tb}", extra={"context": context})
