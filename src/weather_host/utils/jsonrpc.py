"""
Implementación de JSON-RPC 2.0 para MCP (framing por líneas)
"""
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from ..host.errors import JsonRpcError

JSONRPC_VERSION = "2.0"


@dataclass
class JsonRpcMessage:
    jsonrpc: str = JSONRPC_VERSION
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            result["id"] = self.id
        return result

    def to_line(self) -> bytes:
        """Serializa el mensaje como una sola línea JSON terminada en newline"""
        return (json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


@dataclass(kw_only=True)
class JsonRpcRequest(JsonRpcMessage):
    method: str
    params: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["method"] = self.method
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass(kw_only=True)
class JsonRpcResponse(JsonRpcMessage):
    """
    Respuesta etiquetada: exactamente uno de `result` o `error`.
    `raw` conserva el frame completo tal como llegó.
    """
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_frame(cls, frame: Dict[str, Any]) -> "JsonRpcResponse":
        error = frame.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"code": None, "message": str(error)}
        return cls(
            jsonrpc=frame.get("jsonrpc", JSONRPC_VERSION),
            id=frame.get("id"),
            result=frame.get("result"),
            error=error,
            raw=frame,
        )

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Devuelve `result` o lanza JsonRpcError si la respuesta es un error"""
        if self.error is not None:
            raise JsonRpcError(
                self.error.get("code"),
                str(self.error.get("message", "error desconocido")),
                self.error.get("data"),
                request_id=self.id,
            )
        return self.result

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.error is not None:
            result["error"] = self.error
        else:
            result["result"] = self.result
        return result


def is_correlation_id(value: Any) -> bool:
    """Solo enteros cuentan como id de correlación (bool no)"""
    return isinstance(value, int) and not isinstance(value, bool)


class JsonRpcClient:
    """Asigna ids y construye mensajes JSON-RPC para una sesión"""

    def __init__(self):
        self.request_id = 0

    def next_id(self) -> int:
        self.request_id += 1
        return self.request_id

    def create_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> JsonRpcRequest:
        """Crea una nueva petición JSON-RPC con el siguiente id"""
        return JsonRpcRequest(
            id=self.next_id(),
            method=method,
            params=params
        )

    def create_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> JsonRpcRequest:
        """Crea una notificación JSON-RPC (sin ID)"""
        return JsonRpcRequest(
            method=method,
            params=params
        )
