"""Supplier-intelligence source — HTTP API or in-memory sample.

The evidence fetcher only sees the SupplierSource interface:
list_suppliers() and list_risk_changes(limit). HttpSupplierSource calls the
configured supplier API with retries; StaticSupplierSource serves a fixed
list (tests, local development with the bundled sample portfolio).
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from ..config import settings
from ..http_client import http
from ..schemas.suppliers import RiskChange, Supplier
from .supplier_service import format_spend

log = logging.getLogger("abi.suppliers")

_SAMPLE_PATH = Path(__file__).resolve().parent.parent / "data" / "sample_portfolio.json"


def _with_formatted_spend(s: Supplier) -> Supplier:
    if not s.spend_formatted:
        s.spend_formatted = format_spend(s.spend)
    return s


class SupplierSource(ABC):
    @abstractmethod
    async def list_suppliers(self) -> list[Supplier]:
        pass

    @abstractmethod
    async def list_risk_changes(self, limit: int = 10) -> list[RiskChange]:
        pass


class StaticSupplierSource(SupplierSource):
    def __init__(self, suppliers: list[Supplier] | None = None, changes: list[RiskChange] | None = None):
        self._suppliers = [_with_formatted_spend(s) for s in suppliers or []]
        self._changes = list(changes or [])

    @classmethod
    def from_file(cls, path: Path = _SAMPLE_PATH) -> "StaticSupplierSource":
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Sample portfolio unreadable (%s): %s", path, e)
            return cls()
        return cls(
            [Supplier.model_validate(s) for s in raw.get("suppliers", [])],
            [RiskChange.model_validate(c) for c in raw.get("riskChanges", [])],
        )

    async def list_suppliers(self) -> list[Supplier]:
        return list(self._suppliers)

    async def list_risk_changes(self, limit: int = 10) -> list[RiskChange]:
        return self._changes[:limit]


class HttpSupplierSource(SupplierSource):
    """Supplier API: GET {base}/suppliers and GET {base}/risk-changes."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 15.0, max_retries: int = 2):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get(self, path: str, params: dict | None = None) -> dict:
        last_err = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = await http.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                return resp.json()
            except Exception as e:
                last_err = e
                if attempt < self.max_retries:
                    await asyncio.sleep(2**attempt * 0.25)
                else:
                    log.warning("Supplier API %s failed: %s", path, e)
        raise last_err

    async def list_suppliers(self) -> list[Supplier]:
        data = await self._get("/suppliers")
        return [_with_formatted_spend(Supplier.model_validate(s)) for s in data.get("suppliers", [])]

    async def list_risk_changes(self, limit: int = 10) -> list[RiskChange]:
        data = await self._get("/risk-changes", {"limit": limit})
        return [RiskChange.model_validate(c) for c in data.get("riskChanges", [])][:limit]


_source: SupplierSource | None = None


def get_supplier_source() -> SupplierSource:
    global _source
    if _source is None:
        if settings.supplier_api_url:
            _source = HttpSupplierSource(
                settings.supplier_api_url,
                settings.supplier_api_key,
                timeout=settings.internal_timeout_seconds,
            )
        else:
            _source = StaticSupplierSource.from_file()
    return _source


def set_supplier_source(source: SupplierSource | None) -> None:
    global _source
    _source = source
