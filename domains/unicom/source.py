"""Usage data source: contract plus the China Unicom mobile API client."""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

import httpx

from config import UNICOM_TIMEZONE
from logger import logger
from utils.log_sanitizer import sanitize_for_log
from . import config
from .errors import AuthExpiredError, ReauthenticationError, TransientFetchError
from .models import Credential, UsageReading

# flowType values in the detail lists
GENERAL_FLOW = "1"
TARGETED_FLOW = "2"


class UsageSource(ABC):
    """Fetches current usage for one account."""

    @abstractmethod
    async def fetch(self, cookie: str) -> UsageReading:
        """Fetch a reading.

        Raises:
            AuthExpiredError: The cookie is no longer accepted
            TransientFetchError: Any other failure
        """

    @abstractmethod
    async def reauthenticate(self, token_online: str, app_id: str) -> Credential:
        """Exchange the refresh token for a fresh cookie and a rotated token.

        Raises:
            ReauthenticationError: If the exchange fails
        """


def _number(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _resource_details(payload: dict, resource_type: str) -> list[dict]:
    for resource in payload.get("resources") or []:
        if str(resource.get("type", "")).lower() == resource_type:
            return resource.get("details") or []
    return []


def parse_usage(payload: dict, observed_at: datetime) -> UsageReading:
    """Map a package-flow response onto a UsageReading.

    Flow values arrive in MB and are converted to GB. ``summary.sum`` and
    ``summary.freeFlow`` carry total and free usage; when absent they are
    summed from the details.

    Raises:
        AuthExpiredError: On the vendor's auth-expired code
        TransientFetchError: On any other non-success code
    """
    code = str(payload.get("code", ""))
    if code == config.AUTH_EXPIRED_CODE:
        raise AuthExpiredError(f"China Unicom session expired (code {code})")
    if code != config.SUCCESS_CODE:
        desc = payload.get("desc") or payload.get("message") or "no description"
        raise TransientFetchError(f"China Unicom returned code {code}: {desc}")

    flow = _resource_details(payload, "flow")
    limited_used = sum(_number(d.get("use")) for d in flow if str(d.get("flowType")) == TARGETED_FLOW)
    unlimited_used = sum(_number(d.get("use")) for d in flow if str(d.get("flowType")) != TARGETED_FLOW)
    limited_allotted = sum(_number(d.get("total")) for d in flow if str(d.get("flowType")) == TARGETED_FLOW)
    unlimited_allotted = sum(_number(d.get("total")) for d in flow if str(d.get("flowType")) != TARGETED_FLOW)
    free_allotted = sum(_number(d.get("total")) for d in flow if str(d.get("free")) == "1")

    summary = payload.get("summary") or {}
    total_used = _number(summary.get("sum"), limited_used + unlimited_used)
    free_used = _number(
        summary.get("freeFlow"),
        sum(_number(d.get("use")) for d in flow if str(d.get("free")) == "1"),
    )
    total_allotted = limited_allotted + unlimited_allotted

    voice = _resource_details(payload, "voice")
    voice_limited_used = sum(int(_number(d.get("use"))) for d in voice if str(d.get("flowType")) == TARGETED_FLOW)
    voice_unlimited_used = sum(int(_number(d.get("use"))) for d in voice if str(d.get("flowType")) != TARGETED_FLOW)
    voice_limited_allotted = sum(int(_number(d.get("total"))) for d in voice if str(d.get("flowType")) == TARGETED_FLOW)
    voice_unlimited_allotted = sum(int(_number(d.get("total"))) for d in voice if str(d.get("flowType")) != TARGETED_FLOW)

    gb = float(config.MB_PER_GB)
    return UsageReading(
        package_name=payload.get("packageName") or "China Unicom",
        time=observed_at,
        total_used=total_used / gb,
        free_used=free_used / gb,
        paid_used=(total_used - free_used) / gb,
        limited_used=limited_used / gb,
        unlimited_used=unlimited_used / gb,
        total_allotted=total_allotted / gb,
        free_allotted=free_allotted / gb,
        paid_allotted=(total_allotted - free_allotted) / gb,
        limited_allotted=limited_allotted / gb,
        unlimited_allotted=unlimited_allotted / gb,
        voice_used=voice_limited_used + voice_unlimited_used,
        voice_limited_used=voice_limited_used,
        voice_unlimited_used=voice_unlimited_used,
        voice_allotted=voice_limited_allotted + voice_unlimited_allotted,
        voice_limited_allotted=voice_limited_allotted,
        voice_unlimited_allotted=voice_unlimited_allotted,
    )


class ChinaUnicomSource(UsageSource):
    """China Unicom mobile-app endpoints over httpx."""

    def __init__(self, clock: Callable[[], datetime] = None):
        self._clock = clock or (lambda: datetime.now(UNICOM_TIMEZONE))

    async def fetch(self, cookie: str) -> UsageReading:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    config.QUERY_URL,
                    headers={"Cookie": cookie},
                    data={"language": "chinese"},
                    timeout=config.REQUEST_TIMEOUT
                )
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Usage query failed: {e}") from e

        if response.status_code != 200:
            raise TransientFetchError(f"Usage query HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(f"Unparseable usage response: {sanitize_for_log(response.text)}")
            raise TransientFetchError("Usage query returned invalid JSON") from e

        return parse_usage(payload, self._clock())

    async def reauthenticate(self, token_online: str, app_id: str) -> Credential:
        logger.info("Refreshing China Unicom session...")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    config.ONLINE_URL,
                    data={
                        "token_online": token_online,
                        "appId": app_id,
                        "version": config.CLIENT_VERSION,
                        "reqtime": str(int(time.time() * 1000)),
                        "flushkey": "1",
                        "isFirstInstall": "1",
                        "netWay": "wifi",
                    },
                    timeout=config.REQUEST_TIMEOUT
                )
        except httpx.HTTPError as e:
            raise ReauthenticationError(f"Session refresh failed: {e}") from e

        if response.status_code != 200:
            raise ReauthenticationError(f"Session refresh HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ReauthenticationError("Session refresh returned invalid JSON") from e

        if str(data.get("code")) != config.ONLINE_SUCCESS_CODE:
            raise ReauthenticationError(
                f"Session refresh rejected (code {data.get('code')}): {data.get('dsc') or data.get('desc') or 'no description'}"
            )

        new_token = data.get("token_online")
        cookie = "; ".join(f"{name}={value}" for name, value in response.cookies.items())
        if not new_token or not cookie:
            raise ReauthenticationError("Session refresh response missing token_online or cookies")

        logger.info("China Unicom session refreshed")
        return Credential(cookie=cookie, token_online=new_token)
