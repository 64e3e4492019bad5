"""
Supabase access: the shared client and the payment record repository.
"""

import asyncio
import logging
from typing import Any, List, Optional

from supabase import Client, create_client
from supabase.client import ClientOptions

from api.config import config
from core.errors import DataSourceError
from core.job_manager import PaymentDataSource
from core.models import PaymentRecord

logger = logging.getLogger(__name__)

# Source column aliased to the field names the submission file is built from
PAYMENT_COLUMNS = ", ".join([
    "fecha_pago:fecha_operacion",
    "clave_rastreo:claverastreo",
    "clave_institucion_emisora:institucion_ordenante",
    "clave_institucion_receptora:institucion_beneficiaria",
    "cuenta_beneficiario",
    "monto",
])

DATE_COLUMN = "fecha_operacion"

_client: Optional[Client] = None


def get_supabase() -> Client:
    """Get or create the Supabase client."""
    global _client
    if _client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
        _client = create_client(
            config.SUPABASE_URL,
            config.SUPABASE_KEY,
            options=ClientOptions(
                schema=config.SUPABASE_SCHEMA,
                auto_refresh_token=False,
                persist_session=False,
            ),
        )
    return _client


class SupabasePaymentRepository(PaymentDataSource):
    """Reads payment rows from the raw payments table."""

    def __init__(self, client: Optional[Client] = None, table: Optional[str] = None):
        self._client = client
        self.table = table or config.PAYMENTS_TABLE

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _base_query(self):
        return self.client.table(self.table).select(PAYMENT_COLUMNS)

    async def fetch_records_by_date(self, day: str) -> List[PaymentRecord]:
        return await self._run(
            lambda: self._base_query().eq(DATE_COLUMN, day).execute(),
            f"date {day}",
        )

    async def fetch_records_by_range(self, start_date: str, end_date: str) -> List[PaymentRecord]:
        return await self._run(
            lambda: self._base_query().gte(DATE_COLUMN, start_date).lte(DATE_COLUMN, end_date).execute(),
            f"range {start_date} - {end_date}",
        )

    async def _run(self, query, description: str) -> List[PaymentRecord]:
        try:
            # supabase-py is synchronous; keep the event loop free
            response = await asyncio.to_thread(query)
        except Exception as e:
            logger.error(f"Payment query failed for {description}: {e}")
            raise DataSourceError(f"Error querying payments for {description}: {e}") from e

        rows: List[Any] = response.data or []
        logger.info(f"Fetched {len(rows)} payment rows for {description}")
        return [PaymentRecord.from_row(row) for row in rows]
