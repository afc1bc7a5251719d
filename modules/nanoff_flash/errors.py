"""Excepciones específicas del flasher.

Este módulo define la jerarquía de errores terminales. Cada excepción
lleva el código de salida numerado (ExitCode) que el CLI devuelve al
sistema operativo, además de un mensaje legible para el usuario.
"""

from pathlib import Path
from typing import Optional, Iterable

from modules.nanoff_flash.exit_codes import ExitCode


class FlashError(Exception):
    """Excepción base para errores del flasher.

    Todas las excepciones específicas heredan de esta clase.
    """

    default_exit_code = ExitCode.E9000

    def __init__(
        self,
        message: Optional[str] = None,
        original_error: Optional[Exception] = None,
        exit_code: Optional[ExitCode] = None,
    ):
        """Inicializa la excepción base.

        Args:
            message: Mensaje de error amigable. Si se omite se usa el
                mensaje fijo del código de salida.
            original_error: Excepción original que causó este error
            exit_code: Código de salida a reportar
        """
        self.exit_code = exit_code or self.default_exit_code
        self.message = message or self.exit_code.message
        super().__init__(self.message)
        self.original_error = original_error

    def __str__(self) -> str:
        """Retorna representación string del error."""
        if self.original_error:
            return f"{self.message} (Causa: {self.original_error})"
        return self.message


class PackageNotFoundError(FlashError):
    """El target o la versión no existen en el índice, el archivo o la caché."""

    default_exit_code = ExitCode.E9005

    def __init__(
        self,
        target_name: str,
        version: Optional[str] = None,
        reason: Optional[str] = None,
        exit_code: Optional[ExitCode] = None,
    ):
        version_info = f" v{version}" if version else ""
        message = f"Can't find firmware package for '{target_name}'{version_info}."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, None, exit_code)
        self.target_name = target_name
        self.version = version


class DownloadFailedError(FlashError):
    """Fallo de red o HTTP al consultar o descargar un paquete.

    No se distingue entre errores transitorios y permanentes.
    """

    default_exit_code = ExitCode.E9007

    def __init__(self, url: str, original_error: Optional[Exception] = None):
        super().__init__(f"Error downloading firmware file from {url}.", original_error)
        self.url = url


class FormatError(FlashError):
    """Contenido mal formado: registros Intel-HEX o tablas de particiones."""

    default_exit_code = ExitCode.E9007

    def __init__(self, reason: str, file_path: Optional[Path] = None, original_error: Optional[Exception] = None):
        file_info = f" ({file_path})" if file_path else ""
        super().__init__(f"Wrong data in firmware file{file_info}: {reason}", original_error)
        self.reason = reason
        self.file_path = file_path


class DeviceNotPresentError(FlashError):
    """No hay ningún dispositivo enumerado para el transporte pedido."""

    default_exit_code = ExitCode.E9010


class DeviceMismatchError(FlashError):
    """El dispositivo pedido no está, o falló una verificación de coherencia.

    Se lanza cuando:
    - El id de dispositivo solicitado no aparece en la enumeración
    - La dirección del CLR que reporta el dispositivo no coincide con la del paquete
    - El nombre del target del índice no coincide con el solicitado
    """

    default_exit_code = ExitCode.E5002


class ToolExecutionError(FlashError):
    """La herramienta externa no produjo el marcador de éxito esperado."""

    default_exit_code = ExitCode.E5000

    def __init__(
        self,
        tool: str,
        exit_code: Optional[ExitCode] = None,
        detail: Optional[str] = None,
        output: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        code = exit_code or self.default_exit_code
        message = code.message
        if detail:
            message = f"{message} {detail}"
        super().__init__(message, original_error, code)
        self.tool = tool
        self.detail = detail
        self.output = output


class DeviceTimeoutError(FlashError):
    """Se agotó el presupuesto de reintentos esperando al dispositivo."""

    default_exit_code = ExitCode.E2002

    def __init__(self, operation: str, attempts: int, exit_code: Optional[ExitCode] = None):
        message = f"Device didn't become ready for {operation} after {attempts} attempts."
        super().__init__(message, None, exit_code)
        self.operation = operation
        self.attempts = attempts


class PartialFailureError(FlashError):
    """Algunos elementos de un lote fallaron; el resto se completó."""

    default_exit_code = ExitCode.E2002

    def __init__(self, failed_items: Iterable[str]):
        self.failed_items = list(failed_items)
        super().__init__(f"{len(self.failed_items)} item(s) failed: {', '.join(self.failed_items)}")


class InvalidArgumentsError(FlashError):
    """Argumentos inválidos detectados antes de cualquier E/S con el dispositivo."""

    default_exit_code = ExitCode.E9000

    def __init__(self, exit_code: Optional[ExitCode] = None, detail: Optional[str] = None):
        code = exit_code or self.default_exit_code
        message = code.message if not detail else f"{code.message} {detail}"
        super().__init__(message, None, code)
        self.detail = detail


class UnsupportedFlashSizeError(FlashError):
    """Tamaño de flash sin tabla de particiones conocida."""

    default_exit_code = ExitCode.E4001

    def __init__(self, flash_size: int):
        super().__init__(f"Unsupported flash size for ESP32 target: 0x{flash_size:X} bytes.")
        self.flash_size = flash_size


class BinaryPathError(FlashError):
    """La ruta contiene espacios o caracteres no normalizados (J-Link)."""

    default_exit_code = ExitCode.E8003

    def __init__(self, file_path: str):
        super().__init__(f"{ExitCode.E8003.message} ({file_path})")
        self.file_path = file_path


def exit_code_for(error: BaseException) -> ExitCode:
    """Obtiene el código de salida que corresponde a una excepción.

    Args:
        error: Excepción capturada en el nivel superior

    Returns:
        ExitCode: Código de salida mapeado
    """
    if isinstance(error, FlashError):
        return error.exit_code
    if isinstance(error, FileNotFoundError):
        return ExitCode.E9008
    return ExitCode.E9000


def map_tool_error(error: Exception, tool: str, exit_code: ExitCode) -> FlashError:
    """Mapea errores al lanzar una herramienta externa a nuestras excepciones.

    Args:
        error: Excepción original (OSError, TimeoutError...)
        tool: Nombre de la herramienta
        exit_code: Código genérico de la herramienta (E4000, E5000, E8000...)

    Returns:
        FlashError: Excepción específica mapeada
    """
    if isinstance(error, FlashError):
        return error

    error_str = str(error).lower()

    if isinstance(error, FileNotFoundError) or "no such file" in error_str:
        return ToolExecutionError(tool, exit_code, f"{tool} executable not found.", original_error=error)

    if isinstance(error, PermissionError) or "permission denied" in error_str:
        return ToolExecutionError(tool, exit_code, f"Not allowed to run {tool}.", original_error=error)

    if isinstance(error, TimeoutError) or "timed out" in error_str:
        return ToolExecutionError(tool, exit_code, f"{tool} timed out.", original_error=error)

    return ToolExecutionError(tool, exit_code, original_error=error)
