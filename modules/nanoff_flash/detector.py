"""Detector de puertos serie para placas ESP32.

Lista los puertos COM disponibles con serial.tools.list_ports y marca los
que parecen de una placa ESP32 por VID/PID o descripción.
"""

import logging
from typing import List, Dict

import serial.tools.list_ports


logger = logging.getLogger(__name__)


class DeviceDetector:
    """Detector de dispositivos en puertos serie."""

    # VID/PID de puentes USB-serie habituales en placas ESP32
    ESP_VID_PID = [
        (0x303A, 0x1001),  # Espressif USB-JTAG/serial
        (0x303A, 0x0002),  # Espressif USB-OTG
        (0x10C4, 0xEA60),  # Silicon Labs CP210x
        (0x1A86, 0x7523),  # QinHeng Electronics CH340
        (0x1A86, 0x55D4),  # QinHeng Electronics CH9102
        (0x0403, 0x6001),  # FTDI FT232R
    ]

    ESP_KEYWORDS = ['esp', 'silicon labs', 'cp210', 'ch340', 'ch910', 'ftdi', 'usb jtag']

    def scan_ports(self, esp_only: bool = False) -> List[Dict[str, str]]:
        """Escanea puertos serie.

        Args:
            esp_only: Devolver solo los puertos que parecen de una placa ESP

        Returns:
            Lista de diccionarios con 'port', 'description' y 'hwid'.
        """
        detected = []

        for port in serial.tools.list_ports.comports():
            if esp_only and not self._is_esp_device(port):
                continue
            detected.append({
                'port': port.device,
                'description': port.description or 'Unknown',
                'hwid': port.hwid or 'Unknown',
            })

        logger.debug(f"Se encontraron {len(detected)} puertos serie")
        return detected

    def _is_esp_device(self, port) -> bool:
        if port.vid is not None and port.pid is not None:
            if (port.vid, port.pid) in self.ESP_VID_PID:
                return True

        description = (port.description or '').lower()
        return any(keyword in description for keyword in self.ESP_KEYWORDS)
