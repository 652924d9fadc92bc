"""
Configuración del host: .env, config.json opcional y variables de entorno
"""
import json
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from .logging_mcp import LOG_FILE_DEFAULT

PROTOCOL_DEFAULT = "2024-11-05"
READY_BANNER_DEFAULT = "Weather MCP Server running"
CONFIG_PATH_DEFAULT = "config.json"


def _default_command() -> str:
    return sys.executable


def _default_args() -> List[str]:
    return ["-u", "-m", "weather_host.services.weather_server"]


@dataclass
class ServerConfig:
    """Cómo lanzar el servidor MCP y cómo saber que está listo"""
    name: str = "weather"
    command: str = field(default_factory=_default_command)
    args: List[str] = field(default_factory=_default_args)
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    ready_banner: str = READY_BANNER_DEFAULT

    def build_env(self) -> Dict[str, str]:
        merged_env = dict(os.environ)
        merged_env.update(self.env or {})
        merged_env.setdefault("PYTHONUNBUFFERED", "1")
        merged_env.setdefault("PYTHONIOENCODING", "utf-8")
        return merged_env


@dataclass
class HostConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    protocol_version: str = PROTOCOL_DEFAULT
    client_name: str = "local-mcp-client"
    client_version: str = "1.0.0"
    ready_timeout: Optional[float] = 30.0
    request_timeout: Optional[float] = 30.0
    shutdown_grace: float = 0.25
    log_file: Optional[str] = LOG_FILE_DEFAULT
    debug: bool = False

    @property
    def client_info(self) -> Dict[str, str]:
        return {"name": self.client_name, "version": self.client_version}


def _timeout(value: Any) -> Optional[float]:
    """0 o vacío desactiva el timeout"""
    if value is None or value == "":
        return None
    seconds = float(value)
    return seconds if seconds > 0 else None


def load_config_file(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"No se encontró {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: se esperaba un objeto JSON")
    return data


def load_host_config(config_path: Optional[str] = None, env: Optional[Dict[str, str]] = None,
                     dotenv: bool = True) -> HostConfig:
    """
    Construye la configuración en capas: valores por defecto, luego el
    archivo JSON (si existe) y por último las variables de entorno.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))
    env = os.environ if env is None else env

    explicit_path = config_path or env.get("MCP_HOST_CONFIG")
    path = explicit_path or CONFIG_PATH_DEFAULT
    data: Dict[str, Any] = {}
    if explicit_path or Path(path).exists():
        data = load_config_file(path)

    server_data = data.get("server") or {}
    if not isinstance(server_data, dict):
        raise ValueError(f"{path}: 'server' debe ser un objeto")
    args = server_data.get("args", _default_args())
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ValueError(f"{path}: 'server.args' debe ser una lista de strings")
    server_env = server_data.get("env") or {}
    if not isinstance(server_env, dict):
        raise ValueError(f"{path}: 'server.env' debe ser un objeto")

    server = ServerConfig(
        name=server_data.get("name", "weather"),
        command=server_data.get("command") or _default_command(),
        args=list(args),
        cwd=server_data.get("cwd"),
        env={str(k): str(v) for k, v in server_env.items()},
        ready_banner=server_data.get("ready_banner", READY_BANNER_DEFAULT),
    )
    config = HostConfig(
        server=server,
        protocol_version=data.get("protocol_version", PROTOCOL_DEFAULT),
        client_name=data.get("client_name", "local-mcp-client"),
        client_version=data.get("client_version", "1.0.0"),
        ready_timeout=_timeout(data.get("ready_timeout", 30.0)),
        request_timeout=_timeout(data.get("request_timeout", 30.0)),
        shutdown_grace=float(data.get("shutdown_grace", 0.25)),
        log_file=data.get("log_file", LOG_FILE_DEFAULT),
    )

    # Overrides por entorno
    if env.get("WEATHER_SERVER_COMMAND"):
        command, *args = shlex.split(env["WEATHER_SERVER_COMMAND"])
        server.command, server.args = command, args
    if env.get("WEATHER_SERVER_CWD"):
        server.cwd = env["WEATHER_SERVER_CWD"]
    if env.get("MCP_READY_BANNER"):
        server.ready_banner = env["MCP_READY_BANNER"]
    if env.get("MCP_PROTOCOL_VERSION"):
        config.protocol_version = env["MCP_PROTOCOL_VERSION"]
    if "MCP_READY_TIMEOUT" in env:
        config.ready_timeout = _timeout(env["MCP_READY_TIMEOUT"])
    if "MCP_REQUEST_TIMEOUT" in env:
        config.request_timeout = _timeout(env["MCP_REQUEST_TIMEOUT"])
    if env.get("MCP_SHUTDOWN_GRACE"):
        config.shutdown_grace = float(env["MCP_SHUTDOWN_GRACE"])
    if env.get("LOG_FILE"):
        config.log_file = env["LOG_FILE"]
    config.debug = env.get("HOST_DEBUG", "0") == "1"
    return config
