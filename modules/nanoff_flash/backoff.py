"""Utilidades de back-off para reintentos con el dispositivo.

Los reintentos son bucles acotados: el retardo de cada intento se
calcula como función pura del número de intento y, al agotarse el
presupuesto, el resultado es un Err con DeviceTimeoutError en lugar de
un bucle infinito.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator, Optional

from modules.nanoff_flash.errors import DeviceTimeoutError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Result, Ok, Err


logger = logging.getLogger(__name__)


class Growth(Enum):
    """Cómo crece el retardo entre intentos."""
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Backoff:
    """Política de reintentos.

    Características:
    - CONSTANT: base_delay en cada intento
    - LINEAR: base_delay * (attempt + 1)
    - EXPONENTIAL: base_delay * 2^attempt
    - Límite máximo de tiempo de espera
    """

    max_attempts: int = 5
    base_delay: float = 0.1
    growth: Growth = Growth.CONSTANT
    max_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        """Retardo tras el intento ``attempt`` (empezando en 0)."""
        if self.growth == Growth.LINEAR:
            delay = self.base_delay * (attempt + 1)
        elif self.growth == Growth.EXPONENTIAL:
            delay = self.base_delay * (2 ** attempt)
        else:
            delay = self.base_delay
        return min(delay, self.max_delay)

    def delays(self) -> Iterator[float]:
        """Retardos entre intentos consecutivos."""
        return (self.delay(attempt) for attempt in range(self.max_attempts - 1))


# conexión al motor de depuración: 5 intentos separados 100 ms
CONNECT_BACKOFF = Backoff(max_attempts=5, base_delay=0.1)


def ready_backoff(timeout: float) -> Backoff:
    """Espera de dispositivo listo: timeout * (intento + 1)."""
    return Backoff(max_attempts=5, base_delay=timeout, growth=Growth.LINEAR)


async def retry_until(
    check: Callable[[], Awaitable[bool]],
    backoff: Backoff,
    operation: str,
    exit_code: Optional[ExitCode] = None,
) -> "Result[int]":
    """Repite ``check`` hasta que devuelva True o se agoten los intentos.

    Las excepciones de ``check`` se propagan sin reintentar.

    Returns:
        Ok con el número de intentos usados, o Err(DeviceTimeoutError).
    """
    for attempt in range(backoff.max_attempts):
        if await check():
            return Ok(attempt + 1)

        if attempt + 1 < backoff.max_attempts:
            delay = backoff.delay(attempt)
            logger.debug(f"{operation}: intento {attempt + 1}/{backoff.max_attempts} sin éxito, esperando {delay:.2f}s")
            await asyncio.sleep(delay)

    logger.error(f"{operation}: sin éxito tras {backoff.max_attempts} intentos")
    return Err(DeviceTimeoutError(operation, backoff.max_attempts, exit_code))
