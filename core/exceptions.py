# /core/exceptions.py

class HybridRAGError(Exception):
    """Base class for every error raised by the retrieval core.

    ``kind`` is the stable name reported to callers in failed-step records.
    """
    kind = "InternalError"


class InvalidRequestError(HybridRAGError):
    """Malformed caller input. Raised before any side effect happens."""
    kind = "InvalidRequest"


class NotFoundError(HybridRAGError):
    """A referenced node, document or path does not exist."""
    kind = "NotFound"


class ReferenceIntegrityError(HybridRAGError):
    """An edge or chunk points at an entity that does not exist."""
    kind = "ReferenceError"


class DuplicateError(HybridRAGError):
    """A uniqueness constraint would be violated."""
    kind = "DuplicateError"


class ConfigurationError(HybridRAGError):
    """Misconfiguration, e.g. an embedding of the wrong dimension."""
    kind = "ConfigurationError"


class UpstreamUnavailableError(HybridRAGError):
    """The store or the embedding model could not be reached in time."""
    kind = "UpstreamUnavailable"


class OperationNotOfferedError(HybridRAGError):
    """The operation is not part of the capability set of the request's mode."""
    kind = "OperationNotOffered"


class MutationPolicyError(HybridRAGError):
    """A graph mutation was attempted before any read in the same request."""
    kind = "MutationPolicy"


def error_kind(exc: BaseException) -> str:
    return getattr(exc, "kind", "InternalError")
