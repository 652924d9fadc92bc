"""
CLI del host: lanza el servidor de clima, hace el handshake 'initialize'
y ejecuta una sola herramienta (get-forecast / get-alerts).
"""
import asyncio
import logging
import math
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

from .config import HostConfig, load_host_config
from .errors import JsonRpcError, MCPHostError, UsageError
from .logging_mcp import MCPLogger
from .session import StdioSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

NO_CONTENT = "No content"

USAGE = """Uso:
  weather-host forecast <lat> <lon>    (ej: forecast 37.7749 -122.4194)
  weather-host alerts <STATE_CODE>     (ej: alerts CA)"""


@dataclass
class ToolCommand:
    """Una llamada a herramienta ya validada"""
    tool: str
    arguments: Dict[str, Any]


def _parse_coordinate(raw: str, label: str, limit: float) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise UsageError(f"{label} debe ser numérica, ej: 37.7749 -122.4194") from None
    if not math.isfinite(value) or not -limit <= value <= limit:
        raise UsageError(f"{label} fuera de rango [-{limit:g}, {limit:g}]: {raw}")
    return value


def parse_command(argv: List[str]) -> ToolCommand:
    """Valida la línea de comandos antes de lanzar ningún proceso"""
    if not argv:
        raise UsageError("Falta el comando")
    cmd, args = argv[0], argv[1:]

    if cmd == "forecast":
        if len(args) != 2:
            raise UsageError("forecast requiere <lat> <lon>")
        latitude = _parse_coordinate(args[0], "latitud", 90)
        longitude = _parse_coordinate(args[1], "longitud", 180)
        return ToolCommand("get-forecast", {"latitude": latitude, "longitude": longitude})

    if cmd == "alerts":
        if len(args) != 1:
            raise UsageError("alerts requiere <STATE_CODE>")
        state = args[0]
        if len(state) != 2 or not state.isalpha():
            raise UsageError(f"Código de estado de 2 letras, ej: CA (recibido: {state!r})")
        return ToolCommand("get-alerts", {"state": state.upper()})

    raise UsageError(f"Comando desconocido: {cmd!r}")


def extract_text(result: Any) -> str:
    """Texto del primer bloque de contenido de un resultado de tools/call"""
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            text = content[0].get("text")
            if text is not None:
                return str(text)
    return NO_CONTENT


async def run_command(command: ToolCommand, config: HostConfig, mcp_logger: Optional[MCPLogger] = None,
                      out: Optional[TextIO] = None) -> str:
    """Spawn → listo → initialize → tools/call → imprimir → terminar"""
    mcp_logger = mcp_logger or MCPLogger(config.log_file, debug=config.debug)
    session = StdioSession.from_config(config, logger=mcp_logger)
    await session.start()
    try:
        await session.wait_ready(timeout=config.ready_timeout)

        init = await session.initialize(config.protocol_version, config.client_info)
        init.unwrap()

        mcp_logger.log_interaction(session.name, "TOOL_CALL", {
            "tool": command.tool,
            "arguments": command.arguments
        })
        response = await session.call_tool(command.tool, command.arguments)
        text = extract_text(response.unwrap())
        print(text, file=out or sys.stdout)
        return text
    finally:
        # Pequeña espera para que el servidor vacíe su salida
        await session.stop(grace=config.shutdown_grace)


def main(argv: Optional[List[str]] = None, config: Optional[HostConfig] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        command = parse_command(argv)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return EXIT_USAGE

    try:
        config = config or load_host_config()
    except (OSError, ValueError) as e:
        print(f"Error cargando configuración: {e}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        asyncio.run(run_command(command, config))
    except JsonRpcError as e:
        print(f"El servidor respondió con error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except MCPHostError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrumpido por el usuario", file=sys.stderr)
        return EXIT_FAILURE
    except Exception:
        logger.exception("Error inesperado ejecutando %s", command.tool)
        return EXIT_FAILURE
    return EXIT_OK


def run_cli():
    sys.exit(main())


if __name__ == "__main__":
    run_cli()
