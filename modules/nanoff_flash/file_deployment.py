"""Despliegue de archivos en el almacenamiento del dispositivo.

Cada entrada del descriptor se procesa de forma independiente: con
origen se escribe (o sobrescribe) el destino, sin origen se borra. Un
fallo en una entrada se registra y no detiene las demás; al final el
informe indica qué entradas fallaron.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from adapters.interfaces.services import DebugEngine, StorageResult
from modules.nanoff_config.validators import DeploymentFile, FileDeploymentConfiguration
from modules.nanoff_flash.errors import PartialFailureError
from modules.nanoff_flash.result import Result, Ok, Err


logger = logging.getLogger(__name__)


class StorageOperationError(Exception):
    """El dispositivo rechazó una operación de almacenamiento."""

    def __init__(self, destination: str, result: StorageResult):
        super().__init__(f"{destination}: {result.value}")
        self.destination = destination
        self.result = result


@dataclass
class DeploymentEntryOutcome:
    destination: str
    is_delete: bool
    result: Result


@dataclass
class FileDeploymentReport:
    """Resultado por entrada de un despliegue de archivos."""

    entries: List[DeploymentEntryOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[DeploymentEntryOutcome]:
        return [entry for entry in self.entries if isinstance(entry.result, Err)]

    @property
    def succeeded(self) -> List[DeploymentEntryOutcome]:
        return [entry for entry in self.entries if isinstance(entry.result, Ok)]

    def raise_for_failures(self) -> None:
        """Raises PartialFailureError si alguna entrada falló."""
        if self.failed:
            raise PartialFailureError(entry.destination for entry in self.failed)


class FileDeploymentManager:
    """Aplica un FileDeploymentConfiguration sobre un DebugEngine conectado."""

    def __init__(self, engine: DebugEngine, base_path: Optional[Path] = None):
        self.engine = engine
        self.base_path = Path(base_path) if base_path else None

    async def deploy(self, configuration: FileDeploymentConfiguration) -> FileDeploymentReport:
        report = FileDeploymentReport()

        for entry in configuration.files:
            if entry.is_delete:
                result = await self._delete(entry)
            else:
                result = await self._write(entry)

            report.entries.append(DeploymentEntryOutcome(entry.destination_file_path, entry.is_delete, result))

            if isinstance(result, Err):
                logger.warning(f"Falló {entry.destination_file_path}: {result.error}")
            else:
                action = "borrado" if entry.is_delete else "escrito"
                logger.info(f"{entry.destination_file_path} {action}")

        logger.info(f"Despliegue de archivos: {len(report.succeeded)} correctos, {len(report.failed)} con error")
        return report

    async def _delete(self, entry: DeploymentFile) -> "Result[str]":
        status = await self.engine.delete_storage_file(entry.destination_file_path)
        if status != StorageResult.NO_ERROR:
            return Err(StorageOperationError(entry.destination_file_path, status))
        return Ok(entry.destination_file_path)

    async def _write(self, entry: DeploymentFile) -> "Result[str]":
        source = Path(entry.source_file_path)
        if self.base_path is not None and not source.is_absolute():
            source = self.base_path / source

        try:
            content = source.read_bytes()
        except OSError as e:
            return Err(e)

        status = await self.engine.add_storage_file(entry.destination_file_path, content)
        if status != StorageResult.NO_ERROR:
            return Err(StorageOperationError(entry.destination_file_path, status))
        return Ok(entry.destination_file_path)
