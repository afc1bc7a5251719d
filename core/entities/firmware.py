"""Firmware domain entities."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import total_ordering
from pathlib import Path
from typing import Optional, Dict, Any


class SupportedPlatform(Enum):
    """Platforms with firmware packages in the repository.

    Values are the tags used by the package index.
    """
    ESP32 = "esp32"
    STM32 = "stm32"
    TI_CC13X2 = "ti_simplelink"
    EFM32 = "gg11"
    NXP = "nxp"

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> Optional["SupportedPlatform"]:
        """Return the platform for an index tag, or None if it isn't one."""
        if not tag:
            return None
        for platform in cls:
            if platform.value == tag.lower():
                return platform
        return None

    @classmethod
    def parse(cls, value: str) -> "SupportedPlatform":
        """Parse a user supplied platform name."""
        aliases = {
            "esp32": cls.ESP32,
            "stm32": cls.STM32,
            "cc13x2": cls.TI_CC13X2,
            "ti": cls.TI_CC13X2,
            "ti_simplelink": cls.TI_CC13X2,
            "efm32": cls.EFM32,
            "gg11": cls.EFM32,
            "nxp": cls.NXP,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            raise ValueError(f"Unsupported platform: {value}")


class PackageChannel(Enum):
    """Firmware stream a package is published on."""
    STABLE = "stable"
    PREVIEW = "preview"
    COMMUNITY = "community"

    @classmethod
    def for_flags(cls, preview: bool, community: bool = False) -> "PackageChannel":
        if community:
            return cls.COMMUNITY
        return cls.PREVIEW if preview else cls.STABLE


_VERSION_PATTERN = re.compile(
    r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:\.(?P<revision>\d+))?"
    r"(?:-(?P<prerelease>.+))?$"
)


@total_ordering
@dataclass(frozen=True)
class FirmwareVersion:
    """Firmware version: three numeric parts, optional fourth, optional prerelease."""
    major: int
    minor: int
    patch: int
    revision: Optional[int] = None
    prerelease: Optional[str] = None

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision is not None:
            version += f".{self.revision}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        return version

    @classmethod
    def from_string(cls, version_str: str) -> "FirmwareVersion":
        """Parse version string into FirmwareVersion."""
        match = _VERSION_PATTERN.match(version_str.strip()) if version_str else None
        if not match:
            raise ValueError(f"Invalid version format: {version_str}")

        revision = match.group("revision")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            revision=int(revision) if revision is not None else None,
            prerelease=match.group("prerelease"),
        )

    @classmethod
    def try_parse(cls, version_str: Optional[str]) -> Optional["FirmwareVersion"]:
        try:
            return cls.from_string(version_str)
        except (ValueError, AttributeError):
            return None

    def _sort_key(self) -> tuple:
        # a prerelease sorts before the release with the same numbers
        return (
            self.major,
            self.minor,
            self.patch,
            self.revision or 0,
            self.prerelease is None,
            self.prerelease or "",
        )

    def __lt__(self, other: "FirmwareVersion") -> bool:
        """Compare firmware versions."""
        if not isinstance(other, FirmwareVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()


@dataclass(frozen=True)
class TargetIdentity:
    """Named firmware build variant for a board, fixed for one operation."""
    target_name: str
    platform: SupportedPlatform
    chip_variant: Optional[str] = None


@dataclass(frozen=True)
class PackageDescriptor:
    """One firmware package as published in the package index."""
    name: str
    version: str
    download_url: str
    published_date: Optional[datetime] = None
    is_preview: bool = False
    is_community: bool = False
    platform: Optional[SupportedPlatform] = None
    local_path: Optional[Path] = None

    @property
    def is_archived(self) -> bool:
        return self.local_path is not None

    @property
    def channel(self) -> PackageChannel:
        return PackageChannel.for_flags(self.is_preview, self.is_community)

    @property
    def parsed_version(self) -> Optional[FirmwareVersion]:
        return FirmwareVersion.try_parse(self.version)

    @property
    def archive_file_name(self) -> str:
        return package_file_name(self.name, self.version, self.is_preview)

    @classmethod
    def from_index_record(
        cls,
        record: Dict[str, Any],
        is_preview: bool = False,
        is_community: bool = False,
    ) -> "PackageDescriptor":
        """Build a descriptor from a package index JSON record."""
        tags = (record.get("tags") or {}).get("info") or []
        platform = None
        for tag in tags:
            platform = SupportedPlatform.from_tag(tag)
            if platform:
                break

        return cls(
            name=record.get("name", ""),
            version=record.get("version", ""),
            download_url=record.get("cdn_url") or "",
            published_date=_parse_timestamp(record.get("uploaded_at")),
            is_preview=is_preview,
            is_community=is_community,
            platform=platform,
        )


@dataclass(frozen=True)
class CachedArchive:
    """Firmware archive already present in the local cache."""
    target_name: str
    version: Optional[str]
    channel: PackageChannel
    local_path: Path
    last_write_time: datetime


@dataclass
class ExtractedFirmwareSet:
    """Well-known firmware files found after extracting a package."""
    location_path: Path
    target_name: Optional[str] = None
    version: Optional[str] = None
    bootloader_file: Optional[Path] = None
    booter_hex_file: Optional[Path] = None
    booter_start_address: Optional[int] = None
    interpreter_hex_file: Optional[Path] = None
    interpreter_bin_file: Optional[Path] = None
    interpreter_start_address: Optional[int] = None
    extra_files: list = field(default_factory=list)

    def partition_table_file(self, size_label: str) -> Optional[Path]:
        """Partition table binary for a flash size label such as '4MB'."""
        path = self.location_path / f"partitions_{size_label.lower()}.bin"
        return path if path.exists() else None

    def partition_csv_file(self, size_label: str) -> Optional[Path]:
        """Partition layout CSV for a flash size label such as '4MB'."""
        path = self.location_path / f"partitions_nanoclr_{size_label.lower()}.csv"
        return path if path.exists() else None


def package_file_name(target_name: str, version: str, preview: bool, extension: str = ".zip") -> str:
    """File name used for a package in the cache and in the archive."""
    suffix = "-preview" if preview else ""
    return f"{target_name}-{version}{suffix}{extension}"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
