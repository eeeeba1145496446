"""Error taxonomy and API result payloads for the zwave2mqtt gateway.

All domain failures derive from :class:`GatewayError` so callers can
catch the whole family at the operation-surface boundary.

Taxonomy::

    GatewayError
    ├── NodeNotFoundError     unknown node id
    ├── ValueNotFoundError    unknown value on a known node / scene
    ├── SceneNotFoundError    unknown scene id
    ├── InvalidSceneValueError  negative or non-numeric scene delay
    ├── InvalidTopicError     malformed inbound topic (dropped silently)
    ├── TransportError        bus or mesh driver connection failure
    └── PersistenceError      document store write failure

API result payload (published on the ``api`` topic without ``/set``)::

    {"success": true,  "message": "Success zwave api call", "result": ...}
    {"success": false, "message": "No scene found with given sceneid"}

Scene CRUD raises synchronously; :func:`build_api_result` converts the
outcome of an API call into the wire payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class GatewayError(Exception):
    """Base class for every error raised by the gateway core."""


class NodeNotFoundError(GatewayError, LookupError):
    """Raised when a node id is not present in the registry."""

    def __init__(self, node_id: int | str) -> None:
        super().__init__("Node not found")
        self.node_id = node_id


class ValueNotFoundError(GatewayError, LookupError):
    """Raised when a value identifier cannot be resolved."""

    def __init__(self, value_id: str, message: str = "No value found with given valueId") -> None:
        super().__init__(message)
        self.value_id = value_id


class SceneNotFoundError(GatewayError, LookupError):
    """Raised when a scene id does not match any stored scene."""

    def __init__(self, scene_id: int) -> None:
        super().__init__("No scene found with given sceneid")
        self.scene_id = scene_id


class InvalidTopicError(GatewayError, ValueError):
    """Raised by the topic router for topics it cannot interpret."""

    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"Invalid topic {topic!r}: {reason}")
        self.topic = topic


class InvalidSceneValueError(GatewayError, ValueError):
    """Raised when a scene entry carries an unusable delay."""

    def __init__(self, timeout: object) -> None:
        super().__init__(f"Invalid scene value timeout {timeout!r}: expected seconds >= 0")
        self.timeout = timeout


class TransportError(GatewayError):
    """Bus or mesh driver connection failure."""


class PersistenceError(GatewayError):
    """Raised when the document store cannot write a document."""


# ---------------------------------------------------------------------------
# API result payload
# ---------------------------------------------------------------------------

API_SUCCESS_MESSAGE = "Success zwave api call"


@dataclass(frozen=True, slots=True)
class ApiResult:
    """Outcome of a named API call, ready for JSON publication."""

    success: bool
    message: str
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the wire dictionary (``result`` only on success)."""
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            data["result"] = self.result
        return data

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(self.to_dict(), default=str)


def build_api_result(
    result: Any = None,
    *,
    error: Exception | str | None = None,
) -> ApiResult:
    """Build an :class:`ApiResult` from a return value or an error.

    Args:
        result: Value returned by the API call (ignored on error).
        error: Exception raised by the call, or a plain message for
            failures detected before calling (e.g. unknown API).

    Returns:
        A failed result carrying the error message when *error* is set,
        otherwise a successful result wrapping *result*.
    """
    if error is not None:
        return ApiResult(success=False, message=str(error))
    return ApiResult(success=True, message=API_SUCCESS_MESSAGE, result=result)
