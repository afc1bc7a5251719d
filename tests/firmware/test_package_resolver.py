"""Tests para la resolución de paquetes contra el índice y el archivo local."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from core.entities.firmware import SupportedPlatform
from modules.nanoff_config.validators import FlasherSettings
from modules.nanoff_flash.errors import (
    DeviceMismatchError,
    DownloadFailedError,
    InvalidArgumentsError,
    PackageNotFoundError,
)
from modules.nanoff_flash.exit_codes import ExitCode
from modules.nanoff_flash.http_client import HttpClientError
from modules.nanoff_flash.package_resolver import PackageResolver


def make_response(records, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.text = records if isinstance(records, str) else json.dumps(records)
    if isinstance(records, str):
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = records
    return response


def make_record(name, version, tag="esp32", uploaded_at=None):
    return {
        "name": name,
        "version": version,
        "cdn_url": f"https://dl.cloudsmith.io/public/net-nanoframework/{name}-{version}.zip",
        "uploaded_at": uploaded_at or datetime.now(timezone.utc).isoformat(),
        "tags": {"info": [tag]},
    }


class TestPackageResolver:
    """Tests para PackageResolver.resolve."""

    def setup_method(self):
        """Configuración para cada test."""
        self.settings = FlasherSettings()
        self.client = Mock()
        self.client.get = AsyncMock()
        self.resolver = PackageResolver(self.settings, self.client)

    @pytest.mark.asyncio
    async def test_resolve_latest_stable(self):
        """Test la versión estable más reciente para un nombre exacto."""
        self.client.get.return_value = make_response([
            make_record("ESP32_PSRAM_REV0", "1.9.0.9"),
            make_record("ESP32_PSRAM_REV0", "1.9.0.12"),
        ])

        descriptor = await self.resolver.resolve("ESP32_PSRAM_REV0")

        assert descriptor.name == "ESP32_PSRAM_REV0"
        assert descriptor.version == "1.9.0.12"
        assert descriptor.platform == SupportedPlatform.ESP32
        assert not descriptor.is_preview
        assert not descriptor.is_community

        url = self.client.get.call_args.args[0]
        params = self.client.get.call_args.kwargs["params"]
        assert url.endswith("/nanoframework-images/")
        assert params["query"] == "name:^ESP32_PSRAM_REV0$ version:^latest$"

    @pytest.mark.asyncio
    async def test_resolve_preview_repository(self):
        """Test canal preview."""
        self.client.get.return_value = make_response([make_record("ESP32_REV0", "1.9.1.3")])

        descriptor = await self.resolver.resolve("ESP32_REV0", preview=True)

        assert descriptor.is_preview
        assert self.client.get.call_args.args[0].endswith("/nanoframework-images-dev/")

    @pytest.mark.asyncio
    async def test_explicit_version_not_found(self):
        """Test versión explícita que no está publicada."""
        self.client.get.return_value = make_response([make_record("ESP32_REV0", "1.9.0.12")])

        with pytest.raises(PackageNotFoundError) as exc_info:
            await self.resolver.resolve("ESP32_REV0", version="1.8.0.1")

        assert exc_info.value.exit_code == ExitCode.E9005

    @pytest.mark.asyncio
    async def test_name_mismatch(self):
        """Test índice que devuelve otro target."""
        self.client.get.return_value = make_response([make_record("ESP32_REV0_BLE", "1.9.0.12")])

        with pytest.raises(DeviceMismatchError, match="ESP32_REV0_BLE") as exc_info:
            await self.resolver.resolve("ESP32_REV0")

        assert exc_info.value.exit_code == ExitCode.E9005
        assert self.client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_community_fallback(self):
        """Test targets de la comunidad cuando el de referencia no tiene el target."""
        self.client.get.side_effect = [
            make_response("[]"),
            make_response([make_record("ESP32_LILYGO", "1.9.0.3")]),
        ]

        descriptor = await self.resolver.resolve("ESP32_LILYGO")

        assert descriptor.is_community
        assert self.client.get.call_args.args[0].endswith("/nanoframework-images-community-targets/")

    @pytest.mark.asyncio
    async def test_no_community_fallback_for_preview(self):
        """Test que en preview no se consulta la comunidad."""
        self.client.get.return_value = make_response("[]")

        with pytest.raises(PackageNotFoundError):
            await self.resolver.resolve("ESP32_LILYGO", preview=True)

        assert self.client.get.call_count == 1

    @pytest.mark.asyncio
    async def test_index_failure(self):
        """Test fallo de red al consultar el índice."""
        self.client.get.side_effect = HttpClientError("Error HTTP 500")

        with pytest.raises(DownloadFailedError) as exc_info:
            await self.resolver.resolve("ESP32_REV0")

        assert exc_info.value.exit_code == ExitCode.E9007

    @pytest.mark.asyncio
    async def test_malformed_index_response(self):
        """Test respuesta que no es JSON."""
        self.client.get.return_value = make_response("<html>oops</html>")

        with pytest.raises(DownloadFailedError):
            await self.resolver.resolve("ESP32_REV0")

    @pytest.mark.asyncio
    async def test_stale_package_warning(self, caplog):
        """Test aviso de paquete antiguo."""
        old = (datetime.now(timezone.utc) - timedelta(days=120)).isoformat()
        self.client.get.return_value = make_response([make_record("ESP32_REV0", "1.8.0.1", uploaded_at=old)])

        await self.resolver.resolve("ESP32_REV0")

        assert "desactualizada" in caplog.text


class TestPackageListing:
    """Tests para el listado paginado de paquetes."""

    def setup_method(self):
        """Configuración para cada test."""
        self.client = Mock()
        self.client.get = AsyncMock()
        self.resolver = PackageResolver(FlasherSettings(), self.client)

    @pytest.mark.asyncio
    async def test_pages_until_invalid_page(self):
        """Test recorrido de páginas hasta 'Invalid page.'."""
        self.client.get.side_effect = [
            make_response([make_record("ESP32_REV0", "1.9.0.12")]),
            make_response([make_record("ESP32_S3", "1.9.0.12")]),
            make_response('{"detail": "Invalid page."}', status_code=404),
        ]

        descriptors = await self.resolver.list_packages(preview=True, platform=SupportedPlatform.ESP32)

        assert [d.name for d in descriptors] == ["ESP32_REV0", "ESP32_S3"]
        params = self.client.get.call_args.kwargs["params"]
        assert params["page"] == 3
        assert "tag:esp32" in params["q"]

    @pytest.mark.asyncio
    async def test_list_targets_keeps_newest(self):
        """Test una entrada por target con la versión más reciente."""
        self.client.get.side_effect = [
            make_response([make_record("ESP32_REV0", "1.9.0.9"), make_record("ESP32_REV0", "1.9.0.12")]),
            make_response("[]"),
            make_response([make_record("ESP32_LILYGO", "1.9.0.3")]),
            make_response("[]"),
        ]

        targets = await self.resolver.list_targets(preview=False)

        assert [(t.name, t.version) for t in targets] == [("ESP32_LILYGO", "1.9.0.3"), ("ESP32_REV0", "1.9.0.12")]


class TestArchiveResolution:
    """Tests para la resolución contra el archivo local."""

    @pytest.fixture(autouse=True)
    def _archive(self, tmp_path):
        """Archivo local con dos versiones de un target."""
        self.archive = tmp_path / "archive"
        location = self.archive / "ESP32_REV0"
        location.mkdir(parents=True)
        for version in ("1.9.0.9", "1.9.0.12"):
            package = location / f"ESP32_REV0-{version}.zip"
            package.write_bytes(b"PK")
            (location / f"{package.name}.json").write_text(json.dumps({
                "Name": "ESP32_REV0", "Version": version, "Platform": "esp32", "IsPreview": False,
            }))
        self.resolver = PackageResolver(FlasherSettings(archive_path=self.archive), None)

    def test_latest_from_archive(self):
        """Test versión más reciente del archivo."""
        descriptor = self.resolver.resolve_from_archive("ESP32_REV0")

        assert descriptor.version == "1.9.0.12"
        assert descriptor.is_archived
        assert descriptor.platform == SupportedPlatform.ESP32

    def test_exact_version_from_archive(self):
        """Test versión exacta del archivo."""
        assert self.resolver.resolve_from_archive("ESP32_REV0", "1.9.0.9").version == "1.9.0.9"

    def test_missing_from_archive(self):
        """Test paquete ausente del archivo (E9015)."""
        with pytest.raises(PackageNotFoundError) as exc_info:
            self.resolver.resolve_from_archive("ESP32_REV0", "1.7.0.1")
        assert exc_info.value.exit_code == ExitCode.E9015

        with pytest.raises(PackageNotFoundError) as exc_info:
            self.resolver.resolve_from_archive("ESP32_S3")
        assert exc_info.value.exit_code == ExitCode.E9015

    def test_invalid_sidecar_is_skipped(self):
        """Test sidecar inválido ignorado."""
        (self.archive / "ESP32_REV0" / "ESP32_REV0-1.9.1.0.zip.json").write_text("{not json")

        assert self.resolver.latest_archived("ESP32_REV0", preview=False).version == "1.9.0.12"

    @pytest.mark.asyncio
    async def test_resolve_uses_archive_without_network(self):
        """Test que en modo archivo no se usa la red."""
        descriptor = await self.resolver.resolve("ESP32_REV0", from_archive=True)

        assert descriptor.local_path.name == "ESP32_REV0-1.9.0.12.zip"

    def test_archive_path_required(self):
        """Test modo archivo sin directorio configurado."""
        resolver = PackageResolver(FlasherSettings(), None)

        with pytest.raises(InvalidArgumentsError):
            resolver.resolve_from_archive("ESP32_REV0")
