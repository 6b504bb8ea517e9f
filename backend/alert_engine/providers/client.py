"""SMS delivery client for ClickSend-compatible REST gateways.

Recipient checks (E.164 format, enabled country, test-mode allow-list) run
before any network I/O. Gateway failures are mapped onto the engine's error
taxonomy so the runner can decide between skip, retry and abort.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from cryptography.fernet import InvalidToken

from ..config import CountryCode, settings
from ..errors import (
    AuthenticationError,
    CountryNotEnabledError,
    InvalidRecipientError,
    ProviderRejectedError,
    ProviderUnavailableError,
    QuotaExceededError,
    TestModeRestrictionError,
)
from ..phone import ensure_country_enabled, normalize_number
from .credentials import decrypt_value
from .models import ProviderAccount

logger = logging.getLogger(__name__)

_INVALID_RECIPIENT_STATUSES = {"INVALID_RECIPIENT", "INVALID_RECIPIENT_FORMAT", "INVALID_NUMBER"}
_QUOTA_STATUSES = {"INSUFFICIENT_CREDIT", "ACCOUNT_LIMIT_REACHED"}
_COUNTRY_STATUSES = {"COUNTRY_NOT_ENABLED"}


@dataclass(frozen=True)
class DeliveryResult:
    message_id: str
    status: str
    cost: float = 0.0


class SmsDeliveryClient:
    """Sends one message per call through a provider account."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        countries: Sequence[CountryCode] | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url or settings.sms_api_base_url
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self.countries = list(countries if countries is not None else settings.enabled_countries)
        self._http = http_client or httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def close(self) -> None:
        self._http.close()

    def prepare_recipient(self, provider: ProviderAccount, raw: str) -> str:
        """Validate a recipient without touching the network. Returns the E.164 form."""
        number = normalize_number(raw)
        ensure_country_enabled(number, self.countries)
        if provider.is_test_mode and number not in (provider.test_numbers or []):
            raise TestModeRestrictionError(
                f"{number} is not on the test allow-list of provider {provider.name}"
            )
        return number

    def send(self, provider: ProviderAccount, recipient: str, body: str) -> DeliveryResult:
        number = self.prepare_recipient(provider, recipient)
        payload = {
            "messages": [
                {
                    "source": "alert-engine",
                    "from": provider.sender_id,
                    "to": number,
                    "body": body,
                }
            ]
        }
        response = self._request("POST", "/sms/send", provider, json=payload)
        result = self._parse_message(response, number)
        logger.info(
            "SMS accepted by %s for %s (message_id=%s, cost=%.4f)",
            provider.name, number, result.message_id, result.cost,
        )
        return result

    def check_account(self, provider: ProviderAccount) -> dict:
        """Verify credentials and fetch the account balance."""
        response = self._request("GET", "/account", provider)
        try:
            data = response.json().get("data") or {}
        except ValueError:
            data = {}
        currency = data.get("_currency")
        return {
            "ok": True,
            "balance": float(data.get("balance") or 0),
            "currency": currency.get("currency_name_short", "") if isinstance(currency, dict) else "",
        }

    def delivery_status(self, provider: ProviderAccount, message_id: str) -> dict:
        """Carrier status of a previously accepted message."""
        response = self._request("GET", f"/sms/history/{message_id}", provider)
        try:
            data = response.json().get("data") or {}
        except (ValueError, AttributeError):
            data = {}
        status = str(data.get("status") or "unknown")
        return {"message_id": message_id, "status": status, "delivered": status == "Delivered"}

    # ── Internals ──────────────────────────────────────────────────────

    def _auth(self, provider: ProviderAccount) -> tuple[str, str]:
        try:
            return provider.username, decrypt_value(provider.credentials)
        except (InvalidToken, ValueError, TypeError) as exc:
            raise AuthenticationError(f"Stored credentials for {provider.name} cannot be decrypted") from exc

    def _request(self, method: str, path: str, provider: ProviderAccount, **kwargs) -> httpx.Response:
        auth = self._auth(provider)
        try:
            response = self._http.request(method, path, auth=auth, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(f"{provider.name} timed out after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(f"{provider.name} unreachable: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # decoding errors and redirect loops are not transient
            raise ProviderRejectedError(f"{provider.name} request failed: {exc}") from exc
        self._raise_for_status(response, provider)
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"
        return str(data.get("response_msg") or data.get("error_message") or f"HTTP {response.status_code}")

    def _raise_for_status(self, response: httpx.Response, provider: ProviderAccount) -> None:
        code = response.status_code
        if code < 400:
            return
        detail = f"{provider.name}: {self._error_message(response)}"
        if code in (401, 403):
            raise AuthenticationError(detail)
        if code in (402, 429):
            raise QuotaExceededError(detail)
        if code in (400, 422):
            raise InvalidRecipientError(detail)
        if code >= 500:
            raise ProviderUnavailableError(detail)
        raise ProviderRejectedError(detail)

    @staticmethod
    def _parse_message(response: httpx.Response, number: str) -> DeliveryResult:
        try:
            message = response.json()["data"]["messages"][0]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderRejectedError(f"Unrecognized gateway response: {response.text[:200]}") from exc

        status = str(message.get("status", "")).upper()
        if status == "SUCCESS":
            try:
                cost = float(message.get("message_price") or 0)
            except (TypeError, ValueError):
                cost = 0.0
            return DeliveryResult(message_id=str(message.get("message_id", "")), status=status, cost=cost)

        detail = f"{number}: gateway status {status or 'UNKNOWN'}"
        if status in _INVALID_RECIPIENT_STATUSES:
            raise InvalidRecipientError(detail)
        if status in _QUOTA_STATUSES:
            raise QuotaExceededError(detail)
        if status in _COUNTRY_STATUSES:
            raise CountryNotEnabledError(number)
        raise ProviderRejectedError(detail)
