"""ECount OAPI V2 HTTP Client.

Low-level HTTP client for the ECount open API:
- Zone lookup: which oapi{ZONE}.ecount.com host serves a company
- Login: API certificate key → SESSION_ID
- SaveSale: book a sales document (판매전표)

ECount answers HTTP 200 for most failures; the outcome is in the JSON body
(Status, Error, Data.Code, Data.FailCnt).
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from core.observability.logging import get_logger

logger = get_logger(__name__)

ZONE_URL = "https://oapi.ecount.com/OAPI/V2/Zone"
LOGIN_URL = "https://oapi{zone}.ecount.com/OAPI/V2/OAPILogin"
SAVE_SALE_URL = "https://oapi{zone}.ecount.com/OAPI/V2/Sale/SaveSale"


class ECountApiError(Exception):
    """Base exception for ECount API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ECountAuthenticationError(ECountApiError):
    """Zone lookup or login failed."""
    pass


@dataclass
class ECountCredentials:
    """Credentials of one ECount company."""
    company_code: str           # COM_CODE
    user_id: str                # USER_ID
    api_cert_key: str           # API_CERT_KEY
    zone: Optional[str] = None  # Cached after the first lookup

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ECountCredentials":
        missing = [k for k in ("company_code", "user_id", "api_cert_key") if not data.get(k)]
        if missing:
            raise ValueError(f"ECount credentials missing: {', '.join(missing)}")
        return cls(
            company_code=str(data["company_code"]),
            user_id=str(data["user_id"]),
            api_cert_key=str(data["api_cert_key"]),
            zone=data.get("zone"),
        )


@dataclass
class SaveSaleResult:
    """Parsed SaveSale response."""
    success: bool
    slip_no: Optional[str] = None
    success_count: int = 0
    fail_count: int = 0
    error_message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


class ECountClient:
    """HTTP client for the ECount open API.

    Usage:
        client = ECountClient(credentials)
        await client.connect()
        result = await client.save_sale({"SaleList": [...]})
        await client.disconnect()
    """

    def __init__(self, credentials: ECountCredentials, timeout_seconds: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._session_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self._session_id is not None

    async def connect(self) -> bool:
        """Open the HTTP session, resolve the zone and log in."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        await self.login()
        return True

    async def disconnect(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None
        self._session_id = None

    async def _post(self, url: str, body: Dict[str, Any],
                    params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST JSON and return the decoded body.

        Raises:
            ECountApiError: Transport error, non-2xx status or non-JSON body
        """
        if not self._session:
            raise ECountApiError("Not connected. Call connect() first.")

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session.post(url, json=body, params=params, timeout=timeout) as response:
                text = await response.text()
                if response.status >= 400:
                    raise ECountApiError(
                        f"ECount API error {response.status}: {text[:500]}",
                        response.status,
                        text,
                    )
                try:
                    return json.loads(text) if text else {}
                except json.JSONDecodeError as e:
                    raise ECountApiError(f"ECount returned non-JSON body: {text[:200]}", response.status, text) from e
        except aiohttp.ClientError as e:
            raise ECountApiError(f"ECount request failed: {e}") from e

    async def get_zone(self) -> str:
        """Resolve the API zone of the company (cached on the credentials)."""
        if self.credentials.zone:
            return self.credentials.zone

        response = await self._post(ZONE_URL, {"COM_CODE": self.credentials.company_code})
        data = response.get("Data") or {}
        zone = data.get("ZONE")
        if str(response.get("Status")) != "200" or not zone:
            raise ECountAuthenticationError(
                f"Zone lookup failed: [{response.get('Status')}] {response.get('Error')}",
                response_body=response,
            )

        self.credentials.zone = str(zone)
        logger.debug(f"ECount zone for {self.credentials.company_code}: {zone}")
        return self.credentials.zone

    async def login(self) -> str:
        """Log in with the API certificate key and keep the SESSION_ID."""
        zone = await self.get_zone()
        response = await self._post(LOGIN_URL.format(zone=zone), {
            "COM_CODE": self.credentials.company_code,
            "USER_ID": self.credentials.user_id,
            "API_CERT_KEY": self.credentials.api_cert_key,
            "LAN_TYPE": "ko-KR",
            "ZONE": zone,
        })

        data = response.get("Data")
        if not data:
            raise ECountAuthenticationError("ECount login failed: no Data in response", response_body=response)
        if str(data.get("Code")) != "00":
            raise ECountAuthenticationError(
                f"ECount login failed: [{data.get('Code')}] {data.get('Message')}",
                response_body=response,
            )

        session_id = (data.get("Datas") or {}).get("SESSION_ID")
        if not session_id:
            raise ECountAuthenticationError("ECount login failed: no SESSION_ID returned", response_body=response)

        self._session_id = str(session_id)
        logger.debug("ECount login successful")
        return self._session_id

    async def save_sale(self, body: Dict[str, Any]) -> SaveSaleResult:
        """Submit a SaveSale request body ({"SaleList": [{"BulkDatas": {...}}, ...]})."""
        if not self._session_id:
            await self.login()

        zone = await self.get_zone()
        response = await self._post(
            SAVE_SALE_URL.format(zone=zone),
            body,
            params={"SESSION_ID": self._session_id},
        )
        return parse_save_sale_response(response)


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("Message") or error)
    return str(error)


def parse_save_sale_response(response: Dict[str, Any]) -> SaveSaleResult:
    """Interpret a SaveSale response body."""
    status = str(response.get("Status"))
    if status != "200":
        error = response.get("Error")
        message = _error_text(error) if error else f"HTTP {status}"
        return SaveSaleResult(success=False, error_message=f"SaveSale failed: {message}", raw_response=response)

    data = response.get("Data")
    if not data:
        return SaveSaleResult(success=False, error_message="SaveSale failed: no Data in response", raw_response=response)

    fail_count = int(data.get("FailCnt") or 0)
    success_count = int(data.get("SuccessCnt") or 0)
    if fail_count > 0:
        details = data.get("ResultDetails")
        return SaveSaleResult(
            success=False,
            success_count=success_count,
            fail_count=fail_count,
            error_message=f"SaveSale rejected {fail_count} line(s): {_result_details(details)}",
            raw_response=response,
        )

    slip_nos: List[Any] = data.get("SlipNos") or []
    slip_no = str(slip_nos[0]) if slip_nos else None
    if not slip_no:
        return SaveSaleResult(
            success=False,
            success_count=success_count,
            error_message="SaveSale returned no slip number",
            raw_response=response,
        )
    return SaveSaleResult(success=True, slip_no=slip_no, success_count=success_count, raw_response=response)


def _result_details(details: Any) -> str:
    if not details:
        return "no details"
    if isinstance(details, list):
        messages = []
        for detail in details:
            if isinstance(detail, dict):
                messages.append(str(detail.get("TotalError") or detail.get("Errors") or detail))
            else:
                messages.append(str(detail))
        return "; ".join(messages)
    return str(details)
