"""
Correlación de peticiones JSON-RPC con sus respuestas por id
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .errors import RequestTimeoutError, TransportError
from ..utils.jsonrpc import JsonRpcClient, JsonRpcResponse, is_correlation_id

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], None]
FrameSink = Callable[[Dict[str, Any]], None]


@dataclass
class PendingRequest:
    """Entrada de la tabla de pendientes: se resuelve una sola vez"""
    id: int
    method: str
    future: asyncio.Future
    timeout: Optional[float] = None
    started: float = field(default_factory=time.monotonic)
    timer: Optional[asyncio.TimerHandle] = None

    def __await__(self):
        return self.future.__await__()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class RequestCorrelator:
    """
    Asigna ids crecientes (desde 1), registra cada petición en la tabla de
    pendientes antes de escribirla y resuelve el future correspondiente
    cuando llega un frame con ese id.

    Los frames sin id numérico pendiente (notificaciones, peticiones del
    servidor, respuestas tardías a ids expirados) van a `on_unsolicited`.
    Todo se ejecuta en el loop de asyncio: no hay locks.
    """

    def __init__(self, writer: Writer, on_unsolicited: Optional[FrameSink] = None,
                 on_response: Optional[Callable[[PendingRequest, JsonRpcResponse], None]] = None):
        self._writer = writer
        self._on_unsolicited = on_unsolicited
        self._on_response = on_response
        self._client = JsonRpcClient()
        self._pending: Dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    @property
    def last_id(self) -> int:
        return self._client.request_id

    def send(self, method: str, params: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> PendingRequest:
        """Envía una petición y devuelve su entrada pendiente (awaitable)"""
        loop = asyncio.get_running_loop()
        request = self._client.create_request(method, params)
        pending = PendingRequest(id=request.id, method=method, future=loop.create_future(), timeout=timeout)

        # Registrar antes de escribir: la respuesta puede llegar en cuanto sale la línea
        self._pending[pending.id] = pending
        pending.future.add_done_callback(lambda f, rid=pending.id: self._forget_cancelled(rid, f))
        if timeout:
            pending.timer = loop.call_later(timeout, self._expire, pending.id)

        try:
            self._writer(request.to_line())
        except (OSError, RuntimeError) as e:
            self.discard(pending.id)
            raise TransportError(f"No se pudo enviar '{method}' (id={pending.id}): {e}") from e
        return pending

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None):
        """Envía una notificación (sin id, sin entrada pendiente)"""
        notification = self._client.create_notification(method, params)
        try:
            self._writer(notification.to_line())
        except (OSError, RuntimeError) as e:
            raise TransportError(f"No se pudo enviar la notificación '{method}': {e}") from e

    def dispatch(self, frame: Dict[str, Any]) -> bool:
        """Entrega un frame entrante; True si resolvió una petición pendiente"""
        request_id = frame.get("id")
        is_response = "method" not in frame
        if is_response and is_correlation_id(request_id) and request_id in self._pending:
            pending = self._pending.pop(request_id)
            if pending.timer is not None:
                pending.timer.cancel()
            response = JsonRpcResponse.from_frame(frame)
            if not pending.future.done():
                pending.future.set_result(response)
            if self._on_response is not None:
                self._on_response(pending, response)
            return True

        if self._on_unsolicited is not None:
            self._on_unsolicited(frame)
        else:
            logger.info("Mensaje no solicitado: %s", frame)
        return False

    def fail_all(self, exc: BaseException):
        """Rechaza todas las peticiones pendientes (proceso terminado, sesión cerrada)"""
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(exc)
        return len(pending)

    def _expire(self, request_id: int):
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.debug("Petición %s (%s) expirada", request_id, pending.method)
        pending.future.set_exception(RequestTimeoutError(pending.method, request_id, pending.timeout))

    def discard(self, request_id: int):
        """Olvida una petición pendiente sin resolverla (p. ej. si la escritura falló)"""
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()

    def _forget_cancelled(self, request_id: int, future: asyncio.Future):
        entry = self._pending.get(request_id)
        if future.cancelled() and entry is not None and entry.future is future:
            self.discard(request_id)
