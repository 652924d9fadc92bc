"""
Sistema de logging para interacciones MCP
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from pathlib import Path

LOGGER_NAME = "weather_host.mcp"
LOG_FILE_DEFAULT = "logs/mcp_interactions.log"


class MCPLogger:
    """Logger especializado para interacciones MCP"""

    def __init__(self, log_file: Optional[str] = LOG_FILE_DEFAULT, debug: bool = False):
        self.log_file = log_file

        # Configurar logging
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)
        self.logger.propagate = False

        # Reemplazar handlers de una configuración anterior
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        # Handler para archivo
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(file_handler)

        # Handler para consola (stderr: stdout queda para el resultado)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO if debug else logging.WARNING)
        console_handler.setFormatter(logging.Formatter(
            '%(levelname)s - %(message)s'
        ))
        self.logger.addHandler(console_handler)

    def log_interaction(self, server_name: str, interaction_type: str, data: Any,
                        request_id: Optional[int] = None, duration: Optional[float] = None,
                        level: int = logging.INFO):
        """Registra una interacción con un servidor MCP"""
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "server": server_name,
            "type": interaction_type,
            "request_id": request_id,
            "duration_ms": duration,
            "data": self._sanitize_data(data)
        }

        self.logger.log(level, f"MCP: {json.dumps(log_entry, ensure_ascii=False, default=str)}")

    def log_connection(self, server_name: str, status: str, details: str = ""):
        """Registra eventos de conexión"""
        self.log_interaction(server_name, f"CONNECTION_{status.upper()}", {
            "details": details
        })

    def log_state(self, server_name: str, previous: str, current: str):
        self.log_interaction(server_name, "STATE", {"from": previous, "to": current}, level=logging.DEBUG)

    def log_request(self, server_name: str, method: str, params: Any, request_id: Optional[int] = None):
        """Registra una petición (o notificación si no hay id)"""
        kind = "REQUEST" if request_id is not None else "NOTIFICATION"
        self.log_interaction(server_name, kind, {
            "method": method,
            "params": params
        }, request_id)

    def log_response(self, server_name: str, method: str, response: Dict[str, Any],
                     request_id: Optional[int] = None, duration: Optional[float] = None):
        """Registra la respuesta a una petición"""
        self.log_interaction(server_name, "RESPONSE", {
            "method": method,
            "response": response
        }, request_id, duration)

    def log_unsolicited(self, server_name: str, frame: Dict[str, Any]):
        """Mensajes del servidor sin petición pendiente (notificaciones, respuestas tardías)"""
        self.log_interaction(server_name, "UNSOLICITED", frame, frame.get("id"), level=logging.WARNING)

    def log_error(self, server_name: str, error: str, context: Optional[Dict[str, Any]] = None):
        """Registra errores"""
        self.log_interaction(server_name, "ERROR", {
            "error": error,
            "context": context or {}
        }, level=logging.ERROR)

    def _sanitize_data(self, data: Any) -> Any:
        """Sanitiza datos para logging (trunca si es muy largo)"""
        if isinstance(data, str) and len(data) > 1000:
            return data[:1000] + "... [truncated]"
        elif isinstance(data, dict):
            return {k: self._sanitize_data(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self._sanitize_data(item) for item in data[:10]]  # Max 10 items
        return data
