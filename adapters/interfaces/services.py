"""Service interface definitions."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Mapping, Sequence

from core.entities.device import DeviceConnection, DeviceRuntimeState, TransportKind
from core.entities.network import (
    CertificateStore,
    DeviceNetworkConfiguration,
    NetworkConfigurationBlock,
    WirelessConfigurationBlock,
)


@dataclass(frozen=True)
class ToolResult:
    """Combined output and exit status of a vendor tool run."""
    return_code: int
    output: str


class ToolRunner(ABC):
    """Interface for running vendor flashing tools as subprocesses."""

    @abstractmethod
    async def run(
        self,
        executable: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        watch_connect: bool = False,
    ) -> ToolResult:
        """Run a tool to completion and return its combined stdout/stderr.

        If ``watch_connect`` is set the runner watches the streamed output
        for a stalled connection attempt and prompts the user once.
        """
        pass


class SessionState(Enum):
    """States of a flashing session."""
    DISCONNECTED = "disconnected"
    IDENTIFIED = "identified"
    MASS_ERASING = "mass_erasing"
    WRITING = "writing"
    VERIFIED = "verified"
    RESETTING = "resetting"
    DONE = "done"
    ERROR = "error"


class DeviceSession(ABC):
    """Interface for one transport's flashing session."""

    transport: TransportKind

    @abstractmethod
    async def list_devices(self) -> List[str]:
        """Ids of the devices currently enumerated on this transport."""
        pass

    @abstractmethod
    async def identify(self, device_id: Optional[str] = None) -> DeviceConnection:
        """Select and check the device; the first enumerated one if no id is given."""
        pass

    @abstractmethod
    async def flash(
        self,
        partitions: Mapping[int, Path],
        mass_erase: bool = False,
        reset: bool = True,
    ) -> List[str]:
        """Write every {address: file} pair; returns the warnings raised on the way."""
        pass


class RebootMode(Enum):
    """Reboot options understood by the debug wire protocol."""
    NORMAL = "normal"
    CLR_ONLY = "clr_only"
    ENTER_BOOTER = "enter_booter"


class StorageResult(Enum):
    """Result codes of on-device storage operations."""
    NO_ERROR = "no_error"
    FILE_NOT_FOUND = "file_not_found"
    IO_ERROR = "io_error"
    NOT_SUPPORTED = "not_supported"


class DebugEngine(ABC):
    """Capability surface of the debug wire protocol engine of a running device."""

    @abstractmethod
    async def connect(self, timeout_ms: int, force: bool = False) -> bool:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def ping(self) -> DeviceRuntimeState:
        """Which firmware is answering: booter or CLR."""
        pass

    @abstractmethod
    async def is_device_in_initialize_state(self) -> bool:
        pass

    @abstractmethod
    async def resume_execution(self) -> bool:
        pass

    @abstractmethod
    async def execute_memory(self, address: int) -> bool:
        pass

    @abstractmethod
    async def reboot_device(self, mode: RebootMode) -> None:
        pass

    @abstractmethod
    async def connect_to_booter(self) -> bool:
        """Ask a running CLR to reboot into nanoBooter."""
        pass

    @abstractmethod
    async def get_clr_start_address(self) -> int:
        pass

    @abstractmethod
    async def get_deployment_start_address(self) -> int:
        pass

    @abstractmethod
    async def get_clr_version(self) -> Optional[str]:
        pass

    @abstractmethod
    async def get_device_info(self) -> dict:
        """Target name, platform and firmware versions reported by the device."""
        pass

    @abstractmethod
    async def deploy_binary_file(self, file_path: Path, address: int) -> bool:
        pass

    @abstractmethod
    async def add_storage_file(self, destination: str, content: bytes) -> StorageResult:
        pass

    @abstractmethod
    async def delete_storage_file(self, destination: str) -> StorageResult:
        pass

    @abstractmethod
    async def get_network_configuration(self) -> DeviceNetworkConfiguration:
        """Network, Wi-Fi and access point blocks stored on the device."""
        pass

    @abstractmethod
    async def update_network_configuration(self, block: NetworkConfigurationBlock, block_index: int) -> bool:
        pass

    @abstractmethod
    async def update_wireless_configuration(self, block: WirelessConfigurationBlock, block_index: int) -> bool:
        pass

    @abstractmethod
    async def update_certificates(self, store: CertificateStore, certificates: bytes) -> bool:
        """Replace the whole bundle of a certificate store."""
        pass


class DebugEngineFactory(ABC):
    """Creates debug engines for devices reachable on serial ports."""

    @abstractmethod
    async def list_devices(self) -> List[str]:
        """Serial ports with a responding nanoFramework device."""
        pass

    @abstractmethod
    async def create(self, serial_port: str) -> Optional[DebugEngine]:
        """Engine bound to the device on ``serial_port``, or None if it isn't there."""
        pass
