"""
Sesión MCP por STDIO: lanza el proceso servidor, espera el banner de listo
en stderr y correlaciona peticiones/respuestas JSON-RPC por stdout.
"""
import asyncio
import codecs
import enum
import logging
import sys
from typing import Any, Dict, Optional, TextIO

from .config import HostConfig, ServerConfig
from .correlator import PendingRequest, RequestCorrelator
from .errors import (
    ProcessExitedError,
    ProcessStartError,
    ReadinessTimeoutError,
    SessionError,
    TransportError,
)
from .logging_mcp import MCPLogger
from ..utils.framing import LineFramer
from ..utils.jsonrpc import JsonRpcResponse

logger = logging.getLogger(__name__)

READ_CHUNK = 4096
READER_DRAIN_TIMEOUT = 2.0


class SessionState(enum.Enum):
    CREATED = "created"
    SPAWNED = "spawned"
    AWAITING_READY = "awaiting_ready"
    INITIALIZING = "initializing"
    AWAITING_INIT_RESPONSE = "awaiting_init_response"
    CALLING_TOOL = "calling_tool"
    AWAITING_TOOL_RESPONSE = "awaiting_tool_response"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class BannerWatcher:
    """Detecta el banner aunque llegue partido entre dos chunks de stderr"""

    def __init__(self, banner: str):
        self.banner = banner
        self._tail = ""

    def feed(self, text: str) -> bool:
        window = self._tail + text
        if self.banner in window:
            self._tail = ""
            return True
        keep = max(len(self.banner) - 1, 0)
        self._tail = window[-keep:] if keep else ""
        return False


class StdioSession:
    """Proceso servidor + buffer de entrada + tabla de pendientes"""

    def __init__(self, server: ServerConfig, logger: Optional[MCPLogger] = None,
                 request_timeout: Optional[float] = None, diagnostics: Optional[TextIO] = None):
        self.server = server
        self.logger = logger or MCPLogger()
        self.request_timeout = request_timeout
        self.diagnostics = diagnostics
        self.proc: Optional[asyncio.subprocess.Process] = None
        self.state = SessionState.CREATED
        self.framer = LineFramer()
        self.correlator = RequestCorrelator(
            self._write,
            on_unsolicited=self._on_unsolicited,
            on_response=self._on_response,
        )
        self._ready: Optional[asyncio.Future] = None
        self._readers: list = []
        self._stopped = False

    @classmethod
    def from_config(cls, config: HostConfig, logger: Optional[MCPLogger] = None) -> "StdioSession":
        return cls(config.server, logger=logger, request_timeout=config.request_timeout)

    @property
    def name(self) -> str:
        return self.server.name

    @property
    def ready(self) -> bool:
        return self._ready is not None and self._ready.done() and not self._ready.cancelled() \
            and self._ready.exception() is None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode if self.proc else None

    def _set_state(self, state: SessionState):
        previous, self.state = self.state, state
        self.logger.log_state(self.name, previous.value, state.value)

    # ---- ciclo de vida ----

    async def start(self) -> "StdioSession":
        """Lanza el proceso con sus tres streams capturados"""
        if self.proc is not None:
            raise SessionError(f"La sesión '{self.name}' ya fue iniciada")
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        self.logger.log_connection(self.name, "ATTEMPTING", f"Comando: {self.server.command} {' '.join(self.server.args)}")
        try:
            self.proc = await asyncio.create_subprocess_exec(
                self.server.command, *self.server.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.server.cwd or None,
                env=self.server.build_env(),
            )
        except OSError as e:
            self._ready.cancel()
            self.logger.log_connection(self.name, "FAILED", str(e))
            raise ProcessStartError(f"No se pudo lanzar '{self.server.command}': {e}") from e

        self.logger.log_connection(self.name, "SPAWNED", f"PID: {self.proc.pid}")
        self._set_state(SessionState.SPAWNED)
        self._readers = [
            asyncio.create_task(self._pump_stdout(), name=f"{self.name}-stdout"),
            asyncio.create_task(self._pump_stderr(), name=f"{self.name}-stderr"),
        ]
        return self

    async def wait_ready(self, timeout: Optional[float] = None):
        """Espera el banner de listo en stderr"""
        if self._ready is None:
            raise SessionError("La sesión no ha sido iniciada")
        self._set_state(SessionState.AWAITING_READY)
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            raise ReadinessTimeoutError(
                f"'{self.name}' no anunció '{self.server.ready_banner}' en {timeout:g}s"
            ) from None

    async def stop(self, grace: float = 0.0):
        """Termina el proceso. Idempotente: sin efecto si ya se detuvo o ya terminó."""
        if self._stopped:
            return
        self._stopped = True
        if self.proc is None:
            return
        self._set_state(SessionState.TERMINATING)
        if grace > 0:
            await asyncio.sleep(grace)

        if self.proc.returncode is None:
            if self.proc.stdin and not self.proc.stdin.is_closing():
                self.proc.stdin.close()
            try:
                self.proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.proc.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.debug("'%s' no terminó con SIGTERM, usando kill", self.name)
                self.proc.kill()
                await self.proc.wait()

        if self._readers:
            # Un nieto puede heredar los pipes y mantenerlos abiertos
            _, stuck = await asyncio.wait(self._readers, timeout=READER_DRAIN_TIMEOUT)
            for task in stuck:
                task.cancel()
            await asyncio.gather(*self._readers, return_exceptions=True)
        self.correlator.fail_all(SessionError(f"Sesión '{self.name}' cerrada"))
        self.logger.log_connection(self.name, "TERMINATED", f"Código de salida: {self.proc.returncode}")
        self._set_state(SessionState.TERMINATED)

    async def __aenter__(self) -> "StdioSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # ---- peticiones ----

    def send(self, method: str, params: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> PendingRequest:
        """Envía una petición sin esperar la respuesta (permite pipelining)"""
        self._ensure_open()
        pending = self.correlator.send(method, params, timeout=self.request_timeout if timeout is None else timeout)
        self.logger.log_request(self.name, method, params, pending.id)
        return pending

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                      timeout: Optional[float] = None) -> JsonRpcResponse:
        pending = self.send(method, params, timeout)
        await self._drain(pending)
        return await pending

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None):
        self._ensure_open()
        self.logger.log_request(self.name, method, params)
        self.correlator.notify(method, params)
        await self._drain()

    async def initialize(self, protocol_version: str, client_info: Dict[str, str],
                         timeout: Optional[float] = None) -> JsonRpcResponse:
        """Handshake 'initialize' seguido de la notificación 'notifications/initialized'"""
        self._set_state(SessionState.INITIALIZING)
        pending = self.send("initialize", {
            "protocolVersion": protocol_version,
            "capabilities": {"tools": {}},
            "clientInfo": client_info,
        }, timeout)
        self._set_state(SessionState.AWAITING_INIT_RESPONSE)
        await self._drain(pending)
        response = await pending
        if response.ok:
            await self.notify("notifications/initialized", {})
        return response

    async def call_tool(self, name: str, arguments: Dict[str, Any],
                        timeout: Optional[float] = None) -> JsonRpcResponse:
        self._set_state(SessionState.CALLING_TOOL)
        pending = self.send("tools/call", {"name": name, "arguments": arguments}, timeout)
        self._set_state(SessionState.AWAITING_TOOL_RESPONSE)
        await self._drain(pending)
        return await pending

    def _ensure_open(self):
        if self.proc is None or self._stopped:
            raise SessionError(f"La sesión '{self.name}' no está activa")
        if not self.ready:
            raise SessionError(f"'{self.name}' aún no está listo para recibir peticiones")

    def _write(self, data: bytes):
        stdin = self.proc.stdin
        if stdin is None or stdin.is_closing():
            raise TransportError(f"stdin de '{self.name}' está cerrado")
        stdin.write(data)

    async def _drain(self, pending: Optional[PendingRequest] = None):
        try:
            await self.proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            if pending is not None:
                self.correlator.discard(pending.id)
            raise TransportError(f"'{self.name}' cerró su stdin: {e}") from e

    # ---- lectura de streams ----

    async def _pump_stdout(self):
        stream = self.proc.stdout
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            for frame in self.framer.feed(chunk):
                self.correlator.dispatch(frame)

        if len(self.framer):
            logger.debug("Frame incompleto descartado al cerrar stdout: %r", self.framer.pending_bytes()[:200])
        try:
            returncode = await asyncio.wait_for(self.proc.wait(), timeout=1)
        except asyncio.TimeoutError:
            returncode = None
        exc = ProcessExitedError(f"'{self.name}' terminó (código {returncode})", returncode)
        self._fail_ready(exc)
        failed = self.correlator.fail_all(exc)
        if failed and not self._stopped:
            self.logger.log_error(self.name, str(exc), {"pending_failed": failed})
        self.logger.log_connection(self.name, "EXITED", f"Código de salida: {returncode}")

    async def _pump_stderr(self):
        stream = self.proc.stderr
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        watcher = BannerWatcher(self.server.ready_banner)
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if not text:
                continue
            # Espejo de los logs del servidor
            out = self.diagnostics or sys.stderr
            out.write(text)
            out.flush()
            if not self._ready.done() and watcher.feed(text):
                self._ready.set_result(None)
                self.logger.log_connection(self.name, "READY", self.server.ready_banner)

        logger.debug("stderr de '%s' cerrado", self.name)
        self._fail_ready(ProcessExitedError(f"'{self.name}' cerró stderr sin anunciar que estaba listo"))

    def _fail_ready(self, exc: BaseException):
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(exc)

    # ---- callbacks del correlador ----

    def _on_unsolicited(self, frame: Dict[str, Any]):
        self.logger.log_unsolicited(self.name, frame)

    def _on_response(self, pending: PendingRequest, response: JsonRpcResponse):
        self.logger.log_response(self.name, pending.method, response.raw, pending.id, pending.elapsed_ms)
