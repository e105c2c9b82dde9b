# blockserved/services/tron_client.py
"""
TRON chain adapter (TronGrid HTTP API).

Read-only access to the notice contract: ownerOf / tokenURI / totalSupply via
triggerconstantcontract, contract events, and transaction info. Responses are
decoded here into typed records; nothing past this module sees raw TronGrid
JSON.

Outcome classification:
  - revert / "nonexistent token"   -> None (token not minted)
  - timeout, transport error, 429, 5xx -> retried with capped exponential
    backoff, then BlockchainUnavailableError
"""
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

import httpx

from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.utils.exceptions import BlockchainUnavailableError
from blockserved.utils.tron_address import hex_to_base58

ERROR_SELECTOR = "08c379a0"  # Error(string)
RETRYABLE_STATUS = {429, 500, 502, 503, 504}
EVENT_PAGE_SIZE = 200


# ============================================================================
# Decoded records
# ============================================================================

@dataclass
class NoticeServedEvent:
    alert_id: int
    document_id: int
    recipient: str
    transaction_id: str
    block_number: Optional[int]
    block_timestamp: Optional[int]


@dataclass
class NoticeCreatedEvent:
    notice_id: int
    server: str
    recipient: str
    timestamp: Optional[int]
    transaction_id: str
    block_number: Optional[int]


@dataclass
class TransactionInfo:
    transaction_id: str
    block_number: Optional[int]
    block_timestamp: Optional[int]
    success: bool
    fee: int


class ContractReverted(Exception):
    """Constant call reverted (token does not exist or call is invalid)."""


# ============================================================================
# ABI helpers
# ============================================================================

def encode_uint256(value: int) -> str:
    return f"{int(value):064x}"


def decode_uint256(word_hex: str) -> int:
    return int(word_hex[:64] or "0", 16)


def decode_address(word_hex: str) -> str:
    return hex_to_base58(word_hex[:64])


def decode_string(data_hex: str) -> str:
    """Decode a single ABI-encoded dynamic string return value."""
    offset = int(data_hex[0:64], 16) * 2
    length = int(data_hex[offset:offset + 64], 16)
    start = offset + 64
    return bytes.fromhex(data_hex[start:start + length * 2]).decode("utf-8", errors="replace")


def _decode_message(message: Optional[str]) -> str:
    if not message:
        return ""
    try:
        return bytes.fromhex(message).decode("utf-8", errors="replace")
    except ValueError:
        return message


def _address(value: Optional[str]) -> str:
    if not value:
        return ""
    if value.startswith("T"):
        return value
    return hex_to_base58(value)


def _int_or_none(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


# ============================================================================
# Client
# ============================================================================

class TronClient:
    """
    Service layer for TronGrid reads.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        contract_address: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.trongrid_url).rstrip("/")
        self.contract_address = contract_address if contract_address is not None else settings.CONTRACT_ADDRESS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.OUTBOUND_MAX_RETRIES)
        self.backoff_cap = settings.OUTBOUND_BACKOFF_CAP_SECONDS
        self._sleep = sleep

        headers = {"Accept": "application/json"}
        key = api_key if api_key is not None else settings.TRONGRID_API_KEY
        if key:
            headers["TRON-PRO-API-KEY"] = key

        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or settings.OUTBOUND_TIMEOUT_SECONDS,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Transport ─────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> dict:
        last_error = "no attempt made"
        for attempt in range(self.max_retries):
            try:
                response = self._client.request(method, path, **kwargs)
                if response.status_code in RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"TronGrid {method} {path} returned {response.status_code} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                else:
                    if response.status_code >= 400:
                        raise BlockchainUnavailableError(
                            f"TronGrid rejected {path}: HTTP {response.status_code}"
                        )
                    return response.json() if response.content else {}
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {str(e)}"
                logger.warning(
                    f"TronGrid {method} {path} failed: {last_error} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
            except ValueError as e:
                last_error = f"invalid JSON: {str(e)}"
                logger.warning(f"TronGrid {method} {path} returned invalid JSON")

            if attempt < self.max_retries - 1:
                self._sleep(min(2 ** attempt, self.backoff_cap))

        raise BlockchainUnavailableError(last_error)

    # ── Constant calls ────────────────────────────────────────────────────────

    def _call(self, selector: str, parameter: str = "") -> str:
        """Run a constant contract call and return the raw hex result."""
        if not self.contract_address:
            raise BlockchainUnavailableError("CONTRACT_ADDRESS is not configured")

        body = {
            "owner_address": settings.SERVER_WALLET or self.contract_address,
            "contract_address": self.contract_address,
            "function_selector": selector,
            "parameter": parameter,
            "visible": True,
        }
        data = self._request("POST", "/wallet/triggerconstantcontract", json=body)

        result = data.get("result") or {}
        message = _decode_message(result.get("message"))
        if result.get("code") or message:
            text = message or str(result.get("code"))
            if "REVERT" in text.upper() or "NONEXISTENT" in text.upper():
                raise ContractReverted(text)
            raise BlockchainUnavailableError(f"{selector} failed: {text}")

        ret = (data.get("transaction") or {}).get("ret") or []
        if ret and ret[0].get("ret") == "REVERT":
            raise ContractReverted("REVERT opcode executed")

        constant = data.get("constant_result") or []
        if not constant or not constant[0]:
            raise ContractReverted("empty constant result")
        if constant[0].startswith(ERROR_SELECTOR):
            raise ContractReverted(decode_string(constant[0][8:]))
        return constant[0]

    def owner_of(self, token_id: int) -> Optional[str]:
        """Base58 owner of token_id, or None if the token was never minted."""
        try:
            return decode_address(self._call("ownerOf(uint256)", encode_uint256(token_id)))
        except ContractReverted as e:
            logger.debug(f"ownerOf({token_id}) reverted: {e}")
            return None

    def token_uri(self, token_id: int) -> Optional[str]:
        try:
            return decode_string(self._call("tokenURI(uint256)", encode_uint256(token_id)))
        except ContractReverted as e:
            logger.debug(f"tokenURI({token_id}) reverted: {e}")
            return None

    def total_supply(self) -> int:
        try:
            return decode_uint256(self._call("totalSupply()"))
        except ContractReverted as e:
            raise BlockchainUnavailableError(f"totalSupply reverted: {e}")

    # ── Transactions ──────────────────────────────────────────────────────────

    def get_transaction_info(self, transaction_id: str) -> Optional[TransactionInfo]:
        tx = transaction_id.lower().removeprefix("0x")
        data = self._request("POST", "/wallet/gettransactioninfobyid", json={"value": tx})
        if not data or not data.get("id"):
            return None
        receipt = data.get("receipt") or {}
        return TransactionInfo(
            transaction_id=data["id"],
            block_number=_int_or_none(data.get("blockNumber")),
            block_timestamp=_int_or_none(data.get("blockTimeStamp")),
            success=receipt.get("result", "SUCCESS") == "SUCCESS" and data.get("result") != "FAILED",
            fee=int(data.get("fee") or 0),
        )

    # ── Events ────────────────────────────────────────────────────────────────

    def _iter_events(self, event_name: str, max_pages: int = 50) -> Iterator[dict]:
        if not self.contract_address:
            raise BlockchainUnavailableError("CONTRACT_ADDRESS is not configured")
        params = {"event_name": event_name, "limit": EVENT_PAGE_SIZE, "order_by": "block_timestamp,asc"}
        for _ in range(max_pages):
            data = self._request("GET", f"/v1/contracts/{self.contract_address}/events", params=params)
            for item in data.get("data") or []:
                yield item
            fingerprint = (data.get("meta") or {}).get("fingerprint")
            if not fingerprint:
                return
            params = {**params, "fingerprint": fingerprint}

    def get_notice_served_events(self) -> List[NoticeServedEvent]:
        events = []
        for item in self._iter_events("NoticeServed"):
            result = item.get("result") or {}
            try:
                events.append(NoticeServedEvent(
                    alert_id=int(result["alertId"]),
                    document_id=int(result["documentId"]),
                    recipient=_address(result.get("recipient")),
                    transaction_id=item.get("transaction_id", ""),
                    block_number=_int_or_none(item.get("block_number")),
                    block_timestamp=_int_or_none(item.get("block_timestamp")),
                ))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed NoticeServed event {item.get('transaction_id')}: {e}")
        return events

    def get_notice_created_events(self) -> List[NoticeCreatedEvent]:
        events = []
        for item in self._iter_events("LegalNoticeCreated"):
            result = item.get("result") or {}
            try:
                events.append(NoticeCreatedEvent(
                    notice_id=int(result["noticeId"]),
                    server=_address(result.get("server")),
                    recipient=_address(result.get("recipient")),
                    timestamp=_int_or_none(result.get("timestamp")),
                    transaction_id=item.get("transaction_id", ""),
                    block_number=_int_or_none(item.get("block_number")),
                ))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed LegalNoticeCreated event {item.get('transaction_id')}: {e}")
        return events


_tron_client: Optional[TronClient] = None


def get_tron_client() -> TronClient:
    global _tron_client
    if _tron_client is None:
        _tron_client = TronClient()
    return _tron_client
