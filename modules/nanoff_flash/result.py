"""Tipo Result para operaciones de mejor esfuerzo.

Las operaciones cuyo fallo no debe abortar el flujo (respaldo de la
partición de configuración, limpieza de la caché) devuelven un Result.
El llamador decide descartar el error y lo registra como warning, de
modo que la decisión queda visible en el código y en los tests.
"""

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Resultado exitoso."""
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Resultado fallido con la causa."""
    error: Exception

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def discard_error(result: "Result[T]", logger: logging.Logger, what: str) -> Optional[T]:
    """Descarta el error de un Result registrándolo como warning.

    Args:
        result: Resultado de la operación de mejor esfuerzo
        logger: Logger del módulo llamador
        what: Descripción de la operación para el mensaje

    Returns:
        El valor si la operación fue exitosa, None en caso contrario.
    """
    if isinstance(result, Err):
        logger.warning(f"{what} falló, se continúa: {result.error}")
        return None
    return result.value
