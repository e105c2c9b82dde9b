# blockserved/services/energy_service.py
"""
Energy.Store proxy.

Keeps the marketplace API key on the server. Each request is signed with
HMAC-SHA256 over the JSON body serialized with sorted keys and compact
separators; the hex digest goes in the SIGNATURE header next to X-API-ID.
"""
import hashlib
import hmac
import json
from typing import Any, Dict, Optional

import httpx

from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.utils.exceptions import ServiceNotConfiguredError, UpstreamServiceError

SERVICE_NAME = "Energy.Store"


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def sign_payload(payload: Dict[str, Any], api_key: str) -> str:
    return hmac.new(api_key.encode("utf-8"), canonical_json(payload).encode("utf-8"), hashlib.sha256).hexdigest()


class EnergyStoreClient:
    """
    Service layer for the Energy.Store rental API.
    """

    def __init__(
        self,
        api_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_id = api_id if api_id is not None else settings.ENERGY_STORE_API_ID
        self.api_key = api_key if api_key is not None else settings.ENERGY_STORE_API_KEY
        self.base_url = (base_url or settings.ENERGY_STORE_API_URL).rstrip("/")
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_id and self.api_key)

    def _post(self, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise ServiceNotConfiguredError(SERVICE_NAME)

        body = canonical_json(payload)
        headers = {
            "Content-Type": "application/json",
            "X-API-ID": self.api_id,
            "SIGNATURE": sign_payload(payload, self.api_key),
        }
        try:
            with httpx.Client(timeout=settings.OUTBOUND_TIMEOUT_SECONDS, transport=self.transport) as client:
                resp = client.post(f"{self.base_url}/{operation}", content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{SERVICE_NAME} {operation} failed: {str(e)}")
            raise UpstreamServiceError(SERVICE_NAME, f"{operation} unreachable")

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text[:500]}

        if resp.status_code >= 400:
            logger.warning(f"{SERVICE_NAME} {operation} returned {resp.status_code}: {str(data)[:200]}")
            raise UpstreamServiceError(SERVICE_NAME, f"{operation} returned HTTP {resp.status_code}")
        return data

    def create_order(self, quantity: int, receiver: str, period: int = 1) -> Dict[str, Any]:
        data = self._post("createOrder", {"quantity": quantity, "period": period, "receiver": receiver})
        if data.get("status") == "success":
            logger.info(
                f"Energy order {data.get('orderID')} created: {quantity} energy for {receiver}, "
                f"cost={data.get('cost')}"
            )
        return data

    def check_order(self, order_id: str) -> Dict[str, Any]:
        return self._post("checkOrder", {"orderID": order_id})

    def check_address(self, address: str) -> Dict[str, Any]:
        return self._post("checkAddress", {"address": address})


energy_store = EnergyStoreClient()
