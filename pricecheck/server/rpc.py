import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from mcp.types import INVALID_REQUEST, PARSE_ERROR

from pricecheck.errors import ProtocolError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


@dataclass
class RpcMessage:
    """A decoded JSON-RPC request or notification."""

    method: str
    id: Optional[RequestId] = None
    params: dict = field(default_factory=dict)
    is_notification: bool = False

    @property
    def progress_token(self) -> Optional[Union[str, int]]:
        meta = self.params.get("_meta")
        if isinstance(meta, dict):
            return meta.get("progressToken")
        return None


class EnvelopeError(ProtocolError):
    """Raised while decoding; remembers the request id when one could be read."""

    def __init__(self, code: int, message: str, request_id: Optional[RequestId] = None):
        super().__init__(code, message)
        self.request_id = request_id


def decode_message(raw: Union[str, bytes, dict]) -> RpcMessage:
    if isinstance(raw, (str, bytes)):
        try:
            obj = json.loads(raw)
        except ValueError as e:
            raise EnvelopeError(PARSE_ERROR, f"Parse error: {e}") from None
    else:
        obj = raw
    return decode_envelope(obj)


def decode_envelope(obj: Any) -> RpcMessage:
    if not isinstance(obj, dict):
        raise EnvelopeError(INVALID_REQUEST, "Invalid Request: expected a JSON object")

    request_id = obj.get("id")
    has_id = "id" in obj
    if has_id and not _is_valid_id(request_id):
        raise EnvelopeError(INVALID_REQUEST, "Invalid Request: id must be a string or an integer")

    if obj.get("jsonrpc") != JSONRPC_VERSION:
        raise EnvelopeError(INVALID_REQUEST, "Invalid Request: jsonrpc must be \"2.0\"", request_id)

    method = obj.get("method")
    if not isinstance(method, str) or not method:
        raise EnvelopeError(INVALID_REQUEST, "Invalid Request: method must be a non-empty string", request_id)

    params = obj.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise EnvelopeError(INVALID_REQUEST, "Invalid Request: params must be an object", request_id)

    return RpcMessage(method=method, id=request_id, params=params, is_notification=not has_id)


def _is_valid_id(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def success_response(request_id: Optional[RequestId], result: dict) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: Optional[RequestId], code: int, message: str, data: Optional[Any] = None
) -> dict:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def notification(method: str, params: dict) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params}


def is_error_frame(frame: dict) -> bool:
    return "error" in frame and "method" not in frame


def encode(frame: dict) -> str:
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":"))
