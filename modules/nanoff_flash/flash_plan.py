"""Planificación de escrituras en flash.

Un FlashPartitionMap asocia direcciones de flash con archivos. Se
construye por partes: primero los archivos del paquete de firmware (con
direcciones fijas por familia de chip o recuperadas de los HEX), luego la
imagen de aplicación opcional y, por último, el respaldo de la partición
de configuración. Todas las validaciones de direcciones y archivos se
hacen aquí, antes de cualquier E/S con el dispositivo.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence

from core.entities.device import ONE_MEGABYTE, flash_size_label
from core.entities.firmware import ExtractedFirmwareSet
from modules.nanoff_flash.errors import FormatError, InvalidArgumentsError, UnsupportedFlashSizeError
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.result import Result, Ok, Err


logger = logging.getLogger(__name__)


ESP32_CLR_ADDRESS = 0x10000
ESP32_PARTITION_TABLE_ADDRESS = 0x8000
ESP32_DEPLOYMENT_ADDRESS = 0x1B0000
ESP32_DEFAULT_BOOTLOADER_ADDRESS = 0x1000

ESP32_BOOTLOADER_ADDRESSES = {
    "esp32": 0x1000,
    "esp32s2": 0x1000,
    "esp32c3": 0x0,
    "esp32c6": 0x0,
    "esp32h2": 0x0,
    "esp32s3": 0x0,
    "esp32p4": 0x2000,
}

ESP32_SUPPORTED_FLASH_SIZES = tuple(size * ONE_MEGABYTE for size in (2, 4, 8, 16, 32, 64))
PARTITION_TABLE_SIZES = (2, 4, 8, 16)
DEFAULT_FLASH_SIZE = 4 * ONE_MEGABYTE

_CONFIG_PARTITION = re.compile(r"config,.*?(0x[0-9A-Fa-f]+),.*?(0x[0-9A-Fa-f]+),")


class FlashPartitionMap(Mapping):
    """Direcciones de flash a archivos, en orden de inserción.

    Las direcciones son únicas dentro de una operación.
    """

    def __init__(self, entries: Optional[Dict[int, Path]] = None):
        self._entries: Dict[int, Path] = {}
        for address, file_path in (entries or {}).items():
            self.add(address, file_path)

    def add(self, address: int, file_path: Path) -> None:
        """Agrega una entrada.

        Raises:
            InvalidArgumentsError: Si la dirección ya está ocupada.
        """
        if address in self._entries:
            raise InvalidArgumentsError(
                detail=f"Flash address 0x{address:X} is used by more than one file."
            )
        self._entries[address] = Path(file_path).absolute()

    def replace(self, address: int, file_path: Path) -> None:
        """Sustituye el archivo de una dirección existente, conservando el orden."""
        if address not in self._entries:
            raise KeyError(address)
        self._entries[address] = Path(file_path).absolute()

    def __getitem__(self, address: int) -> Path:
        return self._entries[address]

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        items = ", ".join(f"0x{a:X}: {p.name}" for a, p in self._entries.items())
        return f"FlashPartitionMap({items})"


@dataclass(frozen=True)
class ConfigPartition:
    """Partición de configuración según la tabla CSV del paquete."""
    address: int
    size: int


def parse_address(value: Optional[str], invalid_code: ExitCode = ExitCode.E5008) -> int:
    """Convierte una dirección '0x...' a entero.

    Raises:
        InvalidArgumentsError: Si falta el prefijo 0x o no es hexadecimal.
    """
    text = (value or "").strip()
    if not text.lower().startswith("0x"):
        raise InvalidArgumentsError(invalid_code, f"'{value}'")
    try:
        return int(text[2:], 16)
    except ValueError:
        raise InvalidArgumentsError(invalid_code, f"'{value}'")


def build_bin_partition_map(files: Sequence[str], addresses: Sequence[str]) -> FlashPartitionMap:
    """Mapa para archivos BIN con una dirección explícita por archivo.

    Raises:
        InvalidArgumentsError: E5004 archivo inexistente, E5007 sin
            dirección, E5009 número de direcciones distinto al de
            archivos, E5008 dirección mal formada.
    """
    for file_path in files:
        if not Path(file_path).is_file():
            raise InvalidArgumentsError(ExitCode.E5004, f"({file_path})")

    if not addresses:
        raise InvalidArgumentsError(ExitCode.E5007)

    if len(addresses) != len(files):
        raise InvalidArgumentsError(ExitCode.E5009)

    partitions = FlashPartitionMap()
    for file_path, address in zip(files, addresses):
        if not address or not address.strip():
            raise InvalidArgumentsError(ExitCode.E5007)
        partitions.add(parse_address(address), Path(file_path))
    return partitions


def build_hex_partition_map(firmware: ExtractedFirmwareSet, include_booter: bool = True) -> FlashPartitionMap:
    """Mapa para paquetes HEX, con las direcciones recuperadas de los registros.

    Raises:
        FormatError: Si un HEX del paquete no tiene dirección de carga.
    """
    partitions = FlashPartitionMap()

    if include_booter and firmware.booter_hex_file is not None:
        if firmware.booter_start_address is None:
            raise FormatError("missing load address", firmware.booter_hex_file)
        partitions.add(firmware.booter_start_address, firmware.booter_hex_file)

    if firmware.interpreter_hex_file is not None:
        if firmware.interpreter_start_address is None:
            raise FormatError("missing load address", firmware.interpreter_hex_file)
        partitions.add(firmware.interpreter_start_address, firmware.interpreter_hex_file)

    return partitions


def esp32_bootloader_address(chip_type: str) -> int:
    """Dirección del bootloader según la variante: 'ESP32-C3', 'esp32c3'..."""
    key = chip_type.lower().replace("-", "").replace("_", "")
    return ESP32_BOOTLOADER_ADDRESSES.get(key, ESP32_DEFAULT_BOOTLOADER_ADDRESS)


def esp32_flash_size(detected_size: Optional[int], partition_table_size: Optional[int] = None) -> int:
    """Tamaño de flash que decide la tabla de particiones.

    Prioridad: opción explícita (en MB) > tamaño detectado > valor por defecto.

    Raises:
        UnsupportedFlashSizeError: Si el tamaño no tiene firmware disponible.
    """
    if partition_table_size is not None:
        if partition_table_size not in PARTITION_TABLE_SIZES:
            raise UnsupportedFlashSizeError(partition_table_size * ONE_MEGABYTE)
        size = partition_table_size * ONE_MEGABYTE
    elif detected_size:
        size = detected_size
    else:
        size = DEFAULT_FLASH_SIZE

    if size not in ESP32_SUPPORTED_FLASH_SIZES:
        raise UnsupportedFlashSizeError(size)
    return size


def build_esp32_partition_map(
    firmware: ExtractedFirmwareSet,
    chip_type: str,
    flash_size: int,
) -> FlashPartitionMap:
    """Bootloader, nanoCLR y tabla de particiones de un paquete ESP32.

    Raises:
        FormatError: Si al paquete le falta el bootloader o nanoCLR.bin.
        UnsupportedFlashSizeError: Si no hay tabla de particiones para el tamaño.
    """
    if firmware.bootloader_file is None:
        raise FormatError("package doesn't include bootloader.bin", firmware.location_path)
    if firmware.interpreter_bin_file is None:
        raise FormatError("package doesn't include nanoCLR.bin", firmware.location_path)

    partition_table = firmware.partition_table_file(flash_size_label(flash_size))
    if partition_table is None:
        raise UnsupportedFlashSizeError(flash_size)

    partitions = FlashPartitionMap()
    partitions.add(esp32_bootloader_address(chip_type), firmware.bootloader_file)
    partitions.add(ESP32_CLR_ADDRESS, firmware.interpreter_bin_file)
    partitions.add(ESP32_PARTITION_TABLE_ADDRESS, partition_table)
    return partitions


def check_clr_file(clr_file: str) -> Path:
    """Valida un archivo CLR local.

    Raises:
        InvalidArgumentsError: E9011 si no existe, E9012 si no es .bin.
    """
    path = Path(clr_file)
    if not path.is_file():
        raise InvalidArgumentsError(ExitCode.E9011, f"({clr_file})")
    if path.suffix != ".bin":
        raise InvalidArgumentsError(ExitCode.E9012, f"({clr_file})")
    return path.absolute()


def apply_clr_override(partitions: FlashPartitionMap, clr_file: str, clr_address: int) -> FlashPartitionMap:
    """Sustituye la imagen del CLR del paquete por un archivo local.

    El archivo ocupa la misma dirección fija; nunca recibe una nueva.
    """
    clr_path = check_clr_file(clr_file)

    if clr_address in partitions:
        partitions.replace(clr_address, clr_path)
    else:
        partitions.add(clr_address, clr_path)

    logger.info(f"Imagen CLR sustituida por {clr_path} en 0x{clr_address:X}")
    return partitions


def add_application(
    partitions: FlashPartitionMap,
    image_file: str,
    address: Optional[str],
    default_address: Optional[int],
) -> int:
    """Agrega la imagen de despliegue.

    Dirección: la indicada en la línea de comandos o la del target.

    Returns:
        Dirección usada.

    Raises:
        InvalidArgumentsError: E9008 si la imagen no existe, E9009 si la
            dirección no es válida o no hay ninguna.
    """
    if not Path(image_file).is_file():
        raise InvalidArgumentsError(ExitCode.E9008, f"({image_file})")

    if address:
        deployment_address = parse_address(address, ExitCode.E9009)
    elif default_address is not None:
        deployment_address = default_address
    else:
        raise InvalidArgumentsError(ExitCode.E9009)

    partitions.add(deployment_address, Path(image_file))
    return deployment_address


def find_config_partition(csv_file: Path) -> "Result[ConfigPartition]":
    """Lee dirección y tamaño de la partición 'config' de la tabla CSV.

    No lanza: el respaldo de configuración es de mejor esfuerzo.
    """
    try:
        content = Path(csv_file).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        return Err(e)

    match = _CONFIG_PARTITION.search(content)
    if not match:
        return Err(FormatError("no config partition in partition table", csv_file))

    try:
        address = int(match.group(1)[2:], 16)
        size = int(match.group(2)[2:], 16)
    except ValueError as e:
        return Err(FormatError("malformed config partition entry", csv_file, e))

    if size == 0:
        return Err(FormatError("config partition has zero size", csv_file))

    return Ok(ConfigPartition(address=address, size=size))
