import functools
import os
import traceback

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


class TopMLPError(Exception):
    """Base class for errors raised by topmlp."""


class DatasetUnavailableError(TopMLPError):
    """Dataset file is missing, unreadable or malformed."""


class AcceleratorError(TopMLPError):
    """A device allocation, transfer or kernel launch failed. Not recoverable."""

    def __init__(self, operation, filename, lineno, cause=None):
        self.operation = operation
        self.filename = filename
        self.lineno = lineno
        self.cause = cause
        super().__init__(f"{operation} failed ({filename}:{lineno}): {cause}")


def _launch_site(exc):
    # Deepest frame that still belongs to this package, i.e. the launch call.
    frames = traceback.extract_tb(exc.__traceback__)
    site = frames[-1] if frames else None
    for frame in frames:
        if os.path.abspath(frame.filename).startswith(_PACKAGE_DIR):
            site = frame
    if site is None:
        return "<unknown>", 0
    return site.filename, site.lineno


def accelerator_call(operation):
    """Decorator turning runtime failures of a device call into AcceleratorError.

    ValueError/TypeError from argument checks pass through unchanged.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except AcceleratorError:
                raise
            except (RuntimeError, MemoryError) as exc:
                filename, lineno = _launch_site(exc)
                raise AcceleratorError(operation, filename, lineno, exc) from exc

        return wrapper

    return decorator
