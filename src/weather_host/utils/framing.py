"""
Framing por líneas: convierte el stream de bytes del stdout del servidor
en frames JSON (un documento por línea).
"""
import json
import logging
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


def decode_frame(line: bytes) -> Optional[Any]:
    """Decodifica una línea; None si está vacía o no es JSON válido"""
    text = line.strip()
    if not text:
        return None
    try:
        return json.loads(text.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.debug("Línea descartada (no es JSON): %r", text[:200])
        return None


class LineFramer:
    """
    Acumula chunks de bytes y extrae frames separados por '\\n'.

    El prefijo consumido se elimina del buffer a medida que se itera,
    así ningún frame se entrega dos veces. Las líneas que no son JSON
    (logs, basura, frames truncados) se descartan sin propagar error.
    """

    def __init__(self):
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[Dict[str, Any]]:
        """Agrega `chunk` al buffer y devuelve un iterador de frames completos"""
        self._buffer.extend(chunk)
        return self.frames()

    def frames(self) -> Iterator[Dict[str, Any]]:
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                return
            line = bytes(self._buffer[:idx])
            del self._buffer[:idx + 1]

            decoded = decode_frame(line)
            if isinstance(decoded, dict):
                yield decoded
            elif isinstance(decoded, list):
                # Batch JSON-RPC
                for item in decoded:
                    if isinstance(item, dict):
                        yield item
            elif decoded is not None:
                logger.debug("Frame descartado (no es un objeto): %r", decoded)

    def pending_bytes(self) -> bytes:
        """Bytes recibidos después del último newline (frame incompleto)"""
        return bytes(self._buffer)
