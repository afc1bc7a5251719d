"""Flash service for high-level firmware flashing operations.

One FlashService instance handles one invocation: it resolves and fetches
the firmware package, builds the flash plan, and drives the device
session of the platform's transport. Live devices are updated through
the debug engine when a factory for it is provided.
"""

import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from adapters.interfaces.services import DebugEngine, DebugEngineFactory, DeviceSession
from core.entities.device import Esp32DeviceInfo, TransportKind, flash_size_label
from core.entities.firmware import ExtractedFirmwareSet, PackageDescriptor, SupportedPlatform
from infrastructure.esptool_adapter import DEFAULT_BAUD_RATE
from infrastructure.session_factory import create_session
from infrastructure.uniflash_adapter import ccxml_for_target
from modules.nanoff_config.validators import ConfigValidator, FlasherSettings
from modules.nanoff_flash.archive_manager import FirmwareArchiveManager
from modules.nanoff_flash.detector import DeviceDetector
from modules.nanoff_flash.errors import (
    DeviceNotPresentError,
    FlashError,
    FormatError,
    InvalidArgumentsError,
)
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.file_deployment import FileDeploymentManager, FileDeploymentReport
from modules.nanoff_flash.network_deployment import NetworkDeploymentManager
from modules.nanoff_flash.flash_plan import (
    ESP32_CLR_ADDRESS,
    ESP32_DEPLOYMENT_ADDRESS,
    FlashPartitionMap,
    add_application,
    apply_clr_override,
    build_bin_partition_map,
    build_esp32_partition_map,
    build_hex_partition_map,
    check_clr_file,
    esp32_flash_size,
    find_config_partition,
)
from modules.nanoff_flash.http_client import HttpClient
from modules.nanoff_flash.package_cache import PackageCache
from modules.nanoff_flash.package_fetcher import PackageFetcher
from modules.nanoff_flash.package_resolver import PackageResolver
from modules.nanoff_flash.progress import ProgressDelegate
from modules.nanoff_flash.result import Result, Ok, Err, discard_error
from modules.nanoff_flash.target_guess import fit_check, guess_esp32_target, is_supported_chip
from modules.nanoff_flash.wire_session import DeviceWireSession


logger = logging.getLogger(__name__)


_PLATFORM_PREFIXES = (
    (SupportedPlatform.ESP32, ("ESP", "M5", "FEATHER", "ESPKALUGA")),
    (
        SupportedPlatform.STM32,
        (
            "ST", "MBN_QUAIL", "NETDUINO3", "GHI", "IngenuityMicro",
            "WeAct", "ORGPAL", "Pyb", "NESHTEC_NESHNODE_V",
        ),
    ),
    (SupportedPlatform.TI_CC13X2, ("TI",)),
    (SupportedPlatform.EFM32, ("SL",)),
)


def platform_for_target(target_name: Optional[str]) -> Optional[SupportedPlatform]:
    """Platform implied by a target name prefix, or None if it isn't obvious."""
    if not target_name:
        return None
    for platform, prefixes in _PLATFORM_PREFIXES:
        if target_name.startswith(prefixes):
            return platform
    return None


@dataclass
class FlashRequest:
    """Everything one flashing invocation asks for."""
    target_name: Optional[str] = None
    platform: Optional[SupportedPlatform] = None
    version: Optional[str] = None
    preview: bool = False
    from_archive: bool = False
    update: bool = False
    mass_erase: bool = False
    deploy: bool = False
    image_file: Optional[str] = None
    deployment_address: Optional[str] = None
    bin_files: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    clr_file: Optional[str] = None
    serial_port: Optional[str] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    jtag_id: Optional[str] = None
    dfu: bool = False
    dfu_id: Optional[str] = None
    jlink_id: Optional[str] = None
    backup_config: bool = True
    partition_table_size: Optional[int] = None
    fit_check: bool = True
    reset: bool = True
    use_existing_if_download_fails: bool = False
    backup_path: Optional[str] = None
    backup_file: Optional[str] = None


SessionFactory = Callable[..., DeviceSession]


class FlashService:
    """High-level service for firmware flashing operations."""

    def __init__(
        self,
        settings: FlasherSettings,
        client: Optional[HttpClient] = None,
        session_factory: Optional[SessionFactory] = None,
        engine_factory: Optional[DebugEngineFactory] = None,
        progress: Optional[ProgressDelegate] = None,
    ):
        self.settings = settings
        self.client = client
        self.cache = PackageCache(settings)
        self.resolver = PackageResolver(settings, client)
        self.fetcher = PackageFetcher(settings, client, self.cache, progress)
        self.session_factory = session_factory or create_session
        self.engine_factory = engine_factory
        self.detector = DeviceDetector()

    # firmware packages

    async def obtain_firmware(self, request: FlashRequest, target_name: str) -> ExtractedFirmwareSet:
        return await self.fetcher.obtain(
            self.resolver,
            target_name,
            request.version,
            request.preview,
            request.platform,
            request.from_archive,
            request.use_existing_if_download_fails,
        )

    async def list_targets(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
        from_archive: bool = False,
    ) -> List[PackageDescriptor]:
        """Targets available for a channel, from the index or the archive."""
        if from_archive:
            return FirmwareArchiveManager(self.settings, resolver=self.resolver).get_target_list(preview, platform)
        return await self.resolver.list_targets(preview, platform)

    async def update_archive(
        self,
        preview: bool,
        platform: Optional[SupportedPlatform] = None,
        target_name: Optional[str] = None,
    ) -> List[PackageDescriptor]:
        manager = FirmwareArchiveManager(self.settings, self.client, self.resolver)
        return await manager.update_archive(preview, platform, target_name)

    def clear_cache(self) -> None:
        self.cache.clear()

    # device listing

    def list_serial_ports(self) -> List[dict]:
        return self.detector.scan_ports()

    async def list_devices(self, transport: TransportKind) -> List[str]:
        """Devices enumerated by a vendor tool: JTAG adapters, DFU devices, J-Link adapters."""
        return await self.session_factory(transport, self.settings).list_devices()

    # dispatch

    async def run(self, request: FlashRequest) -> List[str]:
        """Run a flashing request on the platform it targets.

        Returns:
            Warnings raised along the way.

        Raises:
            InvalidArgumentsError: E9013 when the platform can't be worked out.
        """
        platform = request.platform or platform_for_target(request.target_name)

        if platform is None:
            if request.jtag_id or request.dfu or request.dfu_id or request.bin_files:
                platform = SupportedPlatform.STM32
            elif request.jlink_id:
                platform = SupportedPlatform.EFM32
            elif request.serial_port:
                platform = SupportedPlatform.ESP32

        if platform == SupportedPlatform.ESP32:
            return await self.flash_esp32(request)
        if platform == SupportedPlatform.STM32:
            return await self.flash_stm32(request)
        if platform == SupportedPlatform.EFM32:
            return await self.flash_jlink(request)
        if platform == SupportedPlatform.TI_CC13X2:
            return await self.flash_ti(request)

        raise InvalidArgumentsError(ExitCode.E9013)

    # ESP32

    async def flash_esp32(self, request: FlashRequest) -> List[str]:
        """Flash an ESP32 board through esptool.

        Arguments are checked before the device is touched.
        """
        application = self._application_partitions(request, ESP32_DEPLOYMENT_ADDRESS)
        if request.clr_file:
            check_clr_file(request.clr_file)
        if not request.update and not application and not request.clr_file:
            raise InvalidArgumentsError(detail="Nothing to do: use --update, --deploy or --clrfile.")

        session = self.session_factory(TransportKind.SERIAL, self.settings, baud_rate=request.baud_rate)
        await session.identify(request.serial_port)
        info: Esp32DeviceInfo = session.device_info
        logger.info(f"Connected to {info.chip_name} ({info.flash_size_label} flash) on {session.port}")

        warnings: List[str] = []
        if not is_supported_chip(info.chip_type):
            warnings.append(f"{info.chip_type} isn't a supported ESP32 series; flashing may not work.")
            logger.warning(warnings[-1])

        flash_size = esp32_flash_size(info.flash_size, request.partition_table_size)
        partitions = FlashPartitionMap()
        firmware = None

        if request.update or request.clr_file:
            target_name = request.target_name
            if not target_name:
                guess = guess_esp32_target(info)
                target_name = guess.target_name
                logger.info(f"No target given, using {target_name}")

            if request.fit_check and info.chip_type == "ESP32":
                for warning in fit_check(target_name, info):
                    logger.warning(warning)
                    warnings.append(warning)

            firmware = await self.obtain_firmware(request, target_name)
            partitions = build_esp32_partition_map(firmware, info.chip_type, flash_size)

            if request.clr_file:
                apply_clr_override(partitions, request.clr_file, ESP32_CLR_ADDRESS)

        for address, file_path in application.items():
            partitions.add(address, file_path)

        config_backup = None
        if firmware is not None and request.backup_config and not request.mass_erase:
            config_backup = discard_error(
                await self._backup_esp32_config(session, firmware, flash_size),
                logger,
                "Config partition backup",
            )
            if config_backup is not None:
                address, backup_file = config_backup
                if address in partitions:
                    logger.warning(f"Config partition at 0x{address:X} overlaps another image, not restoring it")
                else:
                    partitions.add(address, backup_file)

        try:
            warnings += await session.flash(partitions, request.mass_erase, request.reset)
        finally:
            if config_backup is not None:
                config_backup[1].unlink(missing_ok=True)

        logger.info("ESP32 flashed successfully")
        return warnings

    async def backup_esp32(self, request: FlashRequest) -> Path:
        """Read the whole flash of an ESP32 into a file.

        Raises:
            InvalidArgumentsError: E9004 for a backup file without a backup path.
            FlashError: E9002 if the backup directory can't be created,
                E9003 if an existing backup file can't be replaced.
        """
        if request.backup_file and not request.backup_path:
            raise InvalidArgumentsError(ExitCode.E9004)

        backup_dir = Path(request.backup_path) if request.backup_path else Path.cwd()
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FlashError(None, e, ExitCode.E9002)

        session = self.session_factory(TransportKind.SERIAL, self.settings, baud_rate=request.baud_rate)
        await session.identify(request.serial_port)
        info: Esp32DeviceInfo = session.device_info

        file_name = request.backup_file or (
            f"{info.chip_type}_0x{info.mac_address.replace(':', '')}_{datetime.now():%Y%m%d%H%M%S}.bin"
        )
        backup_file = backup_dir / file_name
        if backup_file.exists():
            try:
                backup_file.unlink()
            except OSError as e:
                raise FlashError(None, e, ExitCode.E9003)

        logger.info(f"Backing up {info.flash_size_label} of flash to {backup_file}")
        await session.backup_flash(backup_file)
        return backup_file

    async def _backup_esp32_config(
        self,
        session,
        firmware: ExtractedFirmwareSet,
        flash_size: int,
    ) -> "Result[Tuple[int, Path]]":
        csv_file = firmware.partition_csv_file(flash_size_label(flash_size))
        if csv_file is None:
            return Err(FormatError(f"no partition layout for {flash_size_label(flash_size)}", firmware.location_path))

        found = find_config_partition(csv_file)
        if isinstance(found, Err):
            return found
        partition = found.value

        backup_file = Path(tempfile.gettempdir()) / f"config_partition_{uuid.uuid4().hex}.bin"
        logger.info(f"Backing up config partition (0x{partition.address:X}, 0x{partition.size:X} bytes)")
        read = await session.backup_config_partition(backup_file, partition.address, partition.size)
        if isinstance(read, Err):
            return read
        return Ok((partition.address, backup_file))

    # STM32

    async def flash_stm32(self, request: FlashRequest) -> List[str]:
        """Flash an STM32 board over DFU or JTAG.

        DFU is used when a DFU device id is given or a DFU device is
        connected; otherwise JTAG.
        """
        extra = self._application_partitions(request, None)
        if request.bin_files:
            for address, file_path in build_bin_partition_map(request.bin_files, request.addresses).items():
                extra.add(address, file_path)
        if not request.update and not extra:
            raise InvalidArgumentsError(detail="Nothing to do: use --update, --deploy or --binfile.")

        dfu_session = self.session_factory(TransportKind.DFU, self.settings)
        use_dfu = bool(request.dfu_id) or (
            not request.jtag_id and (request.dfu or bool(await dfu_session.list_devices()))
        )

        if use_dfu:
            session = dfu_session
            await session.identify(request.dfu_id)
        else:
            session = self.session_factory(TransportKind.JTAG, self.settings)
            if not request.jtag_id and not await session.list_devices():
                raise DeviceNotPresentError(None, None, ExitCode.E9010)
            await session.identify(request.jtag_id)

        partitions = FlashPartitionMap()
        if request.update:
            firmware = await self.obtain_firmware(request, self._require_target(request))
            partitions = build_hex_partition_map(firmware)
            if use_dfu:
                session.start_address = firmware.booter_start_address

        for address, file_path in extra.items():
            partitions.add(address, file_path)

        warnings = await session.flash(partitions, request.mass_erase, request.reset)
        logger.info("STM32 device flashed successfully")
        return warnings

    # Silabs Giant Gecko

    async def flash_jlink(self, request: FlashRequest) -> List[str]:
        extra = self._application_partitions(request, None)
        if request.bin_files:
            for address, file_path in build_bin_partition_map(request.bin_files, request.addresses).items():
                extra.add(address, file_path)
        if not request.update and not extra:
            raise InvalidArgumentsError(detail="Nothing to do: use --update, --deploy or --binfile.")

        session = self.session_factory(TransportKind.JLINK, self.settings)
        await session.identify(request.jlink_id)

        partitions = FlashPartitionMap()
        if request.update:
            firmware = await self.obtain_firmware(request, self._require_target(request))
            partitions = build_hex_partition_map(firmware)

        for address, file_path in extra.items():
            partitions.add(address, file_path)

        warnings = await session.flash(partitions, request.mass_erase, request.reset)
        logger.info("J-Link device flashed successfully")
        return warnings

    # TI CC13x2

    async def flash_ti(self, request: FlashRequest) -> List[str]:
        target_name = self._require_target(request)
        ccxml_file = ccxml_for_target(target_name, self.settings.tools_path)

        extra = self._application_partitions(request, None)
        if not request.update and not extra:
            raise InvalidArgumentsError(detail="Nothing to do: use --update or --deploy.")

        session = self.session_factory(TransportKind.UNIFLASH, self.settings, ccxml_file=ccxml_file)
        await session.identify(None)

        partitions = FlashPartitionMap()
        if request.update:
            firmware = await self.obtain_firmware(request, target_name)
            partitions = build_hex_partition_map(firmware)

        for address, file_path in extra.items():
            partitions.add(address, file_path)

        warnings = await session.flash(partitions, request.mass_erase, request.reset)
        logger.info("TI device flashed successfully")
        return warnings

    # live devices

    async def list_nano_devices(self) -> List[str]:
        factory = self._require_engine_factory()
        try:
            return await factory.list_devices()
        except (OSError, FlashError) as e:
            raise FlashError(None, e, ExitCode.E2001)

    async def nano_device_details(self, serial_port: Optional[str]) -> dict:
        wire = DeviceWireSession(await self._engine_for(serial_port))
        try:
            await wire.connect()
            return await wire.engine.get_device_info()
        finally:
            await wire.close()

    async def update_nano_device(self, request: FlashRequest) -> bool:
        """Update the CLR of a running device.

        Returns:
            True if an image was written, False if the device was already up to date.
        """
        clr_file = check_clr_file(request.clr_file) if request.clr_file else None
        wire = DeviceWireSession(await self._engine_for(request.serial_port))

        try:
            await wire.connect()

            if clr_file is not None:
                return await wire.update_clr(None, clr_file=clr_file)

            info = await wire.engine.get_device_info()
            target_name = request.target_name or info.get("target_name")
            if not target_name:
                raise InvalidArgumentsError(detail="Can't tell which target the device is running.")

            firmware = await self.obtain_firmware(request, target_name)
            return await wire.update_clr(firmware, firmware.version)
        finally:
            await wire.close()

    async def deploy_to_nano_device(self, request: FlashRequest) -> int:
        if not request.image_file or not Path(request.image_file).is_file():
            raise InvalidArgumentsError(ExitCode.E9008, f"({request.image_file})")

        wire = DeviceWireSession(await self._engine_for(request.serial_port))
        try:
            return await wire.deploy_application(Path(request.image_file))
        finally:
            await wire.close()

    async def deploy_files(self, descriptor_file: Path, serial_port: Optional[str] = None) -> FileDeploymentReport:
        """Apply a file deployment descriptor.

        Raises:
            InvalidArgumentsError: If the descriptor can't be read or validated.
            PartialFailureError: If any entry failed; the rest are still applied.
        """
        try:
            configuration = ConfigValidator.load_file_deployment(descriptor_file)
        except (OSError, ValueError) as e:
            raise InvalidArgumentsError(detail=f"Can't read file deployment descriptor {descriptor_file}: {e}")

        wire = DeviceWireSession(await self._engine_for(serial_port or configuration.serial_port))

        try:
            await wire.connect()
            manager = FileDeploymentManager(wire.engine, Path(descriptor_file).parent)
            report = await manager.deploy(configuration)
        finally:
            await wire.close()

        report.raise_for_failures()
        return report

    async def deploy_network(self, descriptor_file: Path, serial_port: Optional[str] = None) -> List[str]:
        """Apply a network deployment descriptor to a running device.

        Raises:
            InvalidArgumentsError: If the descriptor can't be read or validated.
            FlashError: E2002 if the device rejects or lacks a configuration block.
        """
        try:
            configuration = ConfigValidator.load_network_deployment(descriptor_file)
        except (OSError, ValueError) as e:
            raise InvalidArgumentsError(detail=f"Can't read network deployment descriptor {descriptor_file}: {e}")

        wire = DeviceWireSession(await self._engine_for(configuration.serial_port or serial_port))

        try:
            await wire.connect()
            manager = NetworkDeploymentManager(wire.engine, Path(descriptor_file).parent)
            return await manager.deploy(configuration)
        finally:
            await wire.close()

    def _require_engine_factory(self) -> DebugEngineFactory:
        if self.engine_factory is None:
            raise FlashError("No debug engine available for nano device operations.", None, ExitCode.E2000)
        return self.engine_factory

    async def _engine_for(self, serial_port: Optional[str]) -> DebugEngine:
        if not serial_port:
            raise InvalidArgumentsError(ExitCode.E6001)

        engine = await self._require_engine_factory().create(serial_port)
        if engine is None:
            raise FlashError(f"No nano device found on {serial_port}.", None, ExitCode.E2000)
        return engine

    # helpers

    @staticmethod
    def _application_partitions(request: FlashRequest, default_address: Optional[int]) -> FlashPartitionMap:
        partitions = FlashPartitionMap()
        if request.deploy or request.image_file:
            if not request.image_file:
                raise InvalidArgumentsError(ExitCode.E9008)
            add_application(partitions, request.image_file, request.deployment_address, default_address)
        return partitions

    @staticmethod
    def _require_target(request: FlashRequest) -> str:
        if not request.target_name:
            raise InvalidArgumentsError(detail="A target name is required (--target).")
        return request.target_name
