"""Recuperación de la dirección de carga de archivos Intel-HEX.

Solo se inspeccionan los dos primeros registros. Se reconocen dos formas:

- registro de dirección extendida ``:02000004XXXXCC`` (15 caracteres)
  seguido de un registro de datos con los 16 bits bajos;
- registro de datos de 16 bytes ``:10AAAA00...`` (43 caracteres).

Cualquier otra forma es un FormatError: no se adivina.
"""

from pathlib import Path

from modules.nanoff_flash.errors import FormatError


EXTENDED_ADDRESS_PREFIX = ":02000004"
EXTENDED_ADDRESS_RECORD_LENGTH = 15
DATA_RECORD_PREFIX = ":10"
DATA_RECORD_LENGTH = 43


def find_start_address(hex_file: Path) -> int:
    """Obtiene la dirección absoluta de inicio de un archivo Intel-HEX.

    Args:
        hex_file: Ruta al archivo .hex

    Returns:
        Dirección de carga del primer bloque.

    Raises:
        FormatError: Si el primer registro no tiene una forma reconocida.
    """
    with open(hex_file, 'r', encoding='ascii', errors='replace') as f:
        first = f.readline().rstrip("\r\n")
        second = f.readline().rstrip("\r\n")

    return start_address_from_records(first, second, hex_file)


def start_address_from_records(first: str, second: str = "", hex_file: Path = None) -> int:
    """Decodifica la dirección a partir de los dos primeros registros."""
    try:
        if len(first) == EXTENDED_ADDRESS_RECORD_LENGTH and first.startswith(EXTENDED_ADDRESS_PREFIX):
            upper = int(first[9:13], 16) << 16

            if not second.startswith(":") or len(second) < 7:
                raise FormatError("second record isn't a data record", hex_file)

            return upper + int(second[3:7], 16)

        if len(first) == DATA_RECORD_LENGTH and first.startswith(DATA_RECORD_PREFIX):
            return int(first[3:7], 16)

    except ValueError as e:
        raise FormatError("address field isn't hexadecimal", hex_file, e)

    raise FormatError("first record is neither an extended address record nor a data record", hex_file)
