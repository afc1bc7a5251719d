"""Builds the flashing session for a transport."""

import logging
from pathlib import Path
from typing import Optional

from core.entities.device import TransportKind
from infrastructure.device_session import BaseDeviceSession
from infrastructure.esptool_adapter import DEFAULT_BAUD_RATE, EspToolSession
from infrastructure.jlink_adapter import JLINK_TIMEOUT, JLinkSession
from infrastructure.stm32_adapter import STM32_CLI_TIMEOUT, StmDfuSession, StmJtagSession
from infrastructure.tool_runner import AsyncToolRunner
from infrastructure.uniflash_adapter import UniflashSession
from modules.nanoff_config.validators import FlasherSettings


logger = logging.getLogger(__name__)


def create_session(
    transport: TransportKind,
    settings: FlasherSettings,
    baud_rate: int = DEFAULT_BAUD_RATE,
    ccxml_file: Optional[Path] = None,
) -> BaseDeviceSession:
    """Session for ``transport`` with a runner using that tool's timeout."""
    if transport == TransportKind.SERIAL:
        return EspToolSession(AsyncToolRunner(timeout=settings.tool_timeout), baud_rate=baud_rate)

    if transport == TransportKind.JTAG:
        return StmJtagSession(AsyncToolRunner(timeout=STM32_CLI_TIMEOUT), settings.tools_path)

    if transport == TransportKind.DFU:
        return StmDfuSession(AsyncToolRunner(timeout=STM32_CLI_TIMEOUT), settings.tools_path)

    if transport == TransportKind.JLINK:
        return JLinkSession(AsyncToolRunner(timeout=JLINK_TIMEOUT), settings.tools_path)

    if transport == TransportKind.UNIFLASH:
        if ccxml_file is None:
            raise ValueError("Uniflash sessions need a target configuration file")
        return UniflashSession(AsyncToolRunner(timeout=settings.tool_timeout), ccxml_file, settings.tools_path)

    raise ValueError(f"No flashing session for transport {transport.value}")
