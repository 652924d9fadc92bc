"""
Errores del host MCP
"""
from typing import Any, Optional


class MCPHostError(Exception):
    """Error base del host"""


class UsageError(MCPHostError):
    """Argumentos de línea de comandos inválidos"""


class SessionError(MCPHostError):
    """Uso incorrecto de una sesión (petición antes de estar lista, después de cerrar...)"""


class ProcessStartError(MCPHostError):
    """No se pudo lanzar el proceso servidor"""


class ProcessExitedError(MCPHostError):
    """El proceso servidor terminó con peticiones o la señal de listo pendientes"""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class TransportError(MCPHostError):
    """Falló la escritura hacia el stdin del proceso"""


class ReadinessTimeoutError(MCPHostError):
    """El banner de listo no apareció a tiempo"""


class RequestTimeoutError(MCPHostError):
    def __init__(self, method: str, request_id: int, timeout: float):
        super().__init__(f"'{method}' (id={request_id}) sin respuesta tras {timeout:g}s")
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class JsonRpcError(MCPHostError):
    """Respuesta JSON-RPC con campo 'error'"""

    def __init__(self, code: Optional[int], message: str, data: Any = None, request_id: Optional[int] = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data
        self.request_id = request_id
