"""
Supabase repository and storage tests with a mocked client.
"""

from unittest.mock import MagicMock

import pytest

from api.repository import PAYMENT_COLUMNS, SupabasePaymentRepository
from api.storage import SupabaseArtifactStorage
from core.errors import DataSourceError, StorageError

ROW = {
    "fecha_pago": "2024-03-14",
    "clave_rastreo": "MBAN01002403140001",
    "clave_institucion_emisora": "40012",
    "clave_institucion_receptora": "90646",
    "cuenta_beneficiario": "646180157000000004",
    "monto": "1500.00",
}


@pytest.fixture
def client():
    return MagicMock()


@pytest.mark.unit
class TestPaymentRepository:

    @pytest.mark.asyncio
    async def test_by_date(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.execute.return_value = MagicMock(data=[ROW])

        records = await SupabasePaymentRepository(client).fetch_records_by_date("2024-03-14")

        client.table.assert_called_once_with("pagos_stp_raw")
        client.table.return_value.select.assert_called_once_with(PAYMENT_COLUMNS)
        query.eq.assert_called_once_with("fecha_operacion", "2024-03-14")
        assert records[0].tracking_key == "MBAN01002403140001"
        assert records[0].amount == "1500.00"

    @pytest.mark.asyncio
    async def test_by_range(self, client):
        query = client.table.return_value.select.return_value
        ranged = query.gte.return_value.lte.return_value
        ranged.execute.return_value = MagicMock(data=[ROW, ROW])

        records = await SupabasePaymentRepository(client).fetch_records_by_range("2024-03-01", "2024-03-15")

        query.gte.assert_called_once_with("fecha_operacion", "2024-03-01")
        query.gte.return_value.lte.assert_called_once_with("fecha_operacion", "2024-03-15")
        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_empty_result(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.execute.return_value = MagicMock(data=None)

        assert await SupabasePaymentRepository(client).fetch_records_by_date("2024-03-14") == []

    @pytest.mark.asyncio
    async def test_query_error(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.execute.side_effect = RuntimeError("relation does not exist")

        with pytest.raises(DataSourceError) as exc_info:
            await SupabasePaymentRepository(client).fetch_records_by_date("2024-03-14")
        assert "relation does not exist" in str(exc_info.value)

    def test_column_aliases(self):
        assert "fecha_pago:fecha_operacion" in PAYMENT_COLUMNS
        assert "clave_rastreo:claverastreo" in PAYMENT_COLUMNS


@pytest.mark.unit
class TestArtifactStorage:

    @pytest.mark.asyncio
    async def test_upload_and_sign(self, client, tmp_path):
        archive = tmp_path / "J1.zip"
        archive.write_bytes(b"PK\x03\x04")
        bucket = client.storage.from_.return_value
        bucket.create_signed_url.return_value = {"signedURL": "https://x.supabase.co/sign/J1.zip?token=t"}

        storage = SupabaseArtifactStorage(client, bucket="cep-results", signed_url_ttl=604800)
        url = await storage.upload_artifact(archive, "J1")

        assert url == "https://x.supabase.co/sign/J1.zip?token=t"
        client.storage.from_.assert_called_with("cep-results")
        bucket.upload.assert_called_once_with(
            "J1.zip", b"PK\x03\x04",
            file_options={"content-type": "application/zip", "upsert": "true"},
        )
        bucket.create_signed_url.assert_called_once_with("J1.zip", 604800)

    @pytest.mark.asyncio
    async def test_camel_case_signed_url_key(self, client, tmp_path):
        archive = tmp_path / "J2.zip"
        archive.write_bytes(b"PK")
        client.storage.from_.return_value.create_signed_url.return_value = {"signedUrl": "https://signed"}

        assert await SupabaseArtifactStorage(client).upload_artifact(archive, "J2") == "https://signed"

    @pytest.mark.asyncio
    async def test_missing_signed_url(self, client, tmp_path):
        archive = tmp_path / "J3.zip"
        archive.write_bytes(b"PK")
        client.storage.from_.return_value.create_signed_url.return_value = {}

        with pytest.raises(StorageError):
            await SupabaseArtifactStorage(client).upload_artifact(archive, "J3")

    @pytest.mark.asyncio
    async def test_missing_archive(self, client, tmp_path):
        with pytest.raises(FileNotFoundError):
            await SupabaseArtifactStorage(client).upload_artifact(tmp_path / "missing.zip", "J4")
        client.storage.from_.return_value.upload.assert_not_called()
