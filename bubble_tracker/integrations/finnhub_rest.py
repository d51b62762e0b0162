from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from bubble_tracker.errors import (
    InvalidCredentialError,
    MissingCredentialError,
    QuoteSourceError,
    RateLimitError,
    TransportError,
    UpstreamHttpError,
)

MISSING_KEY_MESSAGE = "Finnhub API key missing. Please set FINNHUB_API_KEY in the environment"
INVALID_KEY_MESSAGE = "Finnhub API key is invalid or expired. Please check FINNHUB_API_KEY"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait before retrying."


class FinnhubRestClient:
    """Minimal Finnhub REST client for quotes and company news."""

    _BASE_URL = "https://finnhub.io/api/v1"

    def __init__(
        self,
        api_key: str,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout_sec: float = 5,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url or self._BASE_URL
        self.session = session or requests
        self.timeout_sec = timeout_sec

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def ensure_api_key(self) -> str:
        if not self.api_key:
            raise MissingCredentialError(MISSING_KEY_MESSAGE)
        return self.api_key

    @staticmethod
    def _status_code_from_error(exc: Exception) -> int | None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
        if isinstance(code, int):
            return code
        return None

    def _classify(self, exc: Exception, subject: str) -> QuoteSourceError:
        code = self._status_code_from_error(exc)
        if code == 401:
            return InvalidCredentialError(INVALID_KEY_MESSAGE, status_code=code)
        if code == 429:
            return RateLimitError(RATE_LIMIT_MESSAGE, status_code=code)
        if code is not None:
            reason = getattr(getattr(exc, "response", None), "reason", "") or ""
            return UpstreamHttpError(f"HTTP {code} for {subject}: {reason}".rstrip(), status_code=code)
        return TransportError(f"Transport error for {subject}: {exc}")

    def _get(self, path: str, params: Dict[str, Any], subject: str) -> Any:
        token = self.ensure_api_key()
        try:
            response = self.session.get(
                f"{self.base_url}{path}",
                params={**params, "token": token},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise self._classify(exc, subject) from exc
        except ValueError as exc:
            raise TransportError(f"Invalid JSON for {subject}: {exc}") from exc

    @staticmethod
    def _to_float(value: Any, default: float = 0.0) -> float:
        try:
            if value is None or value == "":
                return default
            return float(value)
        except (TypeError, ValueError):
            return default

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        payload = self._get("/quote", {"symbol": symbol}, symbol)
        if not isinstance(payload, dict):
            payload = {}

        unix = self._to_float(payload.get("t"))
        return {
            "symbol": symbol,
            "price": self._to_float(payload.get("c")),
            "prev_close": self._to_float(payload.get("pc")),
            "observed_at": int(unix * 1000) if unix > 0 else int(time.time() * 1000),
        }

    def get_company_news(self, symbol: str, start: date, end: date) -> List[Dict[str, Any]]:
        payload = self._get(
            "/company-news",
            {"symbol": symbol, "from": start.isoformat(), "to": end.isoformat()},
            symbol,
        )
        if not isinstance(payload, list):
            return []
        return [row for row in payload if isinstance(row, dict)]
