# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.error_handlers",
#   "purpose": "Per-item failure handlers composed by explicit wrapping.",
#   "sections": [
#     {
#       "id": "errorhandler",
#       "name": "ErrorHandler",
#       "anchor": "class-errorhandler",
#       "kind": "class"
#     },
#     {
#       "id": "nullerrorhandler",
#       "name": "NullErrorHandler",
#       "anchor": "class-nullerrorhandler",
#       "kind": "class"
#     },
#     {
#       "id": "loggingerrorhandler",
#       "name": "LoggingErrorHandler",
#       "anchor": "class-loggingerrorhandler",
#       "kind": "class"
#     },
#     {
#       "id": "resetserviceerrorhandler",
#       "name": "ResetServiceErrorHandler",
#       "anchor": "class-resetserviceerrorhandler",
#       "kind": "class"
#     },
#     {
#       "id": "exceptioncodeerrorhandler",
#       "name": "ExceptionCodeErrorHandler",
#       "anchor": "class-exceptioncodeerrorhandler",
#       "kind": "class"
#     },
#     {
#       "id": "default-error-handler",
#       "name": "default_error_handler",
#       "anchor": "function-default-error-handler",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Per-item failure handling.

When the per-item callback raises, the executor hands the item, the exception
and the progress logger to an :class:`ErrorHandler`. The handler returns the
exit code contribution of that failure; contributions are summed into the exit
code of the process. Handlers are combined by wrapping one inside another::

    ExceptionCodeErrorHandler(LoggingErrorHandler(ResetServiceErrorHandler(state)))

Each wrapper does its own work and then delegates to the handler it wraps.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ConsoleParallel.core.progress import ProgressLogger

__all__ = [
    "ErrorHandler",
    "ExceptionCodeErrorHandler",
    "LoggingErrorHandler",
    "NullErrorHandler",
    "ResetServiceErrorHandler",
    "Resettable",
    "default_error_handler",
    "exception_code",
]


class ErrorHandler(Protocol):
    """Callable contract for per-item failures."""

    def handle_error(self, item: str, exc: BaseException, logger: "ProgressLogger") -> int:
        ...


@runtime_checkable
class Resettable(Protocol):
    """Shared state that can be restored to a clean slate after a failure."""

    def reset(self) -> None:
        ...


class NullErrorHandler:
    """Ignore the failure and contribute nothing to the exit code."""

    def handle_error(self, item: str, exc: BaseException, logger: "ProgressLogger") -> int:
        return 0


class LoggingErrorHandler:
    """Report the failed item through the progress logger."""

    def __init__(self, inner: Optional[ErrorHandler] = None) -> None:
        self.inner: ErrorHandler = inner or NullErrorHandler()

    def handle_error(self, item: str, exc: BaseException, logger: "ProgressLogger") -> int:
        logger.log_item_processing_failed(item, exc)
        return self.inner.handle_error(item, exc, logger)


class ResetServiceErrorHandler:
    """Reset shared state so the next item does not inherit a broken service."""

    def __init__(self, resettable: Resettable, inner: Optional[ErrorHandler] = None) -> None:
        self.resettable = resettable
        self.inner: ErrorHandler = inner or NullErrorHandler()

    @classmethod
    def for_service(cls, service: object, inner: Optional[ErrorHandler] = None) -> ErrorHandler:
        """Wrap ``inner`` only when ``service`` can actually be reset."""

        if isinstance(service, Resettable):
            return cls(service, inner)
        return inner or NullErrorHandler()

    def handle_error(self, item: str, exc: BaseException, logger: "ProgressLogger") -> int:
        self.resettable.reset()
        return self.inner.handle_error(item, exc, logger)


def exception_code(exc: BaseException) -> int:
    """Return the integer code carried by ``exc`` (``code`` or ``errno``), else 0."""

    for attribute in ("code", "errno"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


class ExceptionCodeErrorHandler:
    """Add the exception's code (at least 1) to the wrapped handler's result."""

    def __init__(self, inner: Optional[ErrorHandler] = None) -> None:
        self.inner: ErrorHandler = inner or NullErrorHandler()

    def handle_error(self, item: str, exc: BaseException, logger: "ProgressLogger") -> int:
        exit_code = self.inner.handle_error(item, exc, logger)
        # 0 means success; most exceptions carry no code at all.
        return exit_code + max(1, exception_code(exc))


def default_error_handler(service: object = None) -> ErrorHandler:
    """Return the standard chain: reset (if possible), log, count."""

    return ExceptionCodeErrorHandler(
        LoggingErrorHandler(ResetServiceErrorHandler.for_service(service))
    )
