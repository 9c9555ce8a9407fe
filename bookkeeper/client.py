"""Thin HTTP client for the bookkeeping API with a keyed response cache.

Reads go through :meth:`BookkeeperClient.query`, which remembers the last
response per key until a :meth:`BookkeeperClient.mutate` call invalidates it.
"""
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

from .utils.journal import validate_lines

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and (body.get("message") or body.get("error")):
        return str(body.get("message") or body.get("error"))
    text = (resp.text or "").strip()
    if text and not text.lstrip().lower().startswith(("<!doctype", "<html")):
        return text[:200]
    return f"{resp.status_code}: {resp.reason}"


def _key_part(part: Any) -> str:
    return str(part).strip("/")


class BookkeeperClient:
    def __init__(self, base_url: str, token: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._cache: Dict[Tuple[str, ...], Any] = {}
        if token:
            self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            self.session.headers.pop("Authorization", None)
        self._cache.clear()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if not 200 <= resp.status_code < 300:
            message = error_message(resp)
            logger.warning("%s %s failed: %s", method, path, message)
            raise ApiError(resp.status_code, message)
        if resp.status_code == 204 or not resp.content:
            return None
        if "json" in resp.headers.get("Content-Type", ""):
            return resp.json()
        return resp.content

    # ---- cache ----

    def query(self, *key: Any, refresh: bool = False, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``"/".join(key)``, served from the cache unless ``refresh`` is set."""
        cache_key = tuple(_key_part(k) for k in key)
        if params:
            cache_key += tuple(f"{k}={v}" for k, v in sorted(params.items()))
        if not refresh and cache_key in self._cache:
            return self._cache[cache_key]
        data = self._request("GET", "/".join(_key_part(k) for k in key), params=params)
        self._cache[cache_key] = data
        return data

    def cached(self, *key: Any) -> Any:
        return self._cache.get(tuple(_key_part(k) for k in key))

    def invalidate(self, *prefixes: Iterable[Any]) -> int:
        """Drop every cached key starting with one of ``prefixes``; returns how many went."""
        normalized = [tuple(_key_part(p) for p in prefix) for prefix in prefixes]
        stale = [k for k in self._cache if any(k[:len(p)] == p for p in normalized)]
        for k in stale:
            del self._cache[k]
        return len(stale)

    def mutate(self, method: str, path: str, json: Optional[Dict[str, Any]] = None,
               invalidate: Iterable[Iterable[Any]] = ()) -> Any:
        data = self._request(method, path, json=json)
        self.invalidate(*invalidate)
        return data

    def cancel(self) -> None:
        """Close the session; later calls open fresh connections."""
        self.session.close()

    # ---- auth ----

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "api/auth/login", json={"email": email, "password": password})
        self.set_token(data["token"])
        return data

    # ---- ledger ----

    def accounts(self, company_id: int, refresh: bool = False):
        return self.query("api", "companies", company_id, "accounts", refresh=refresh)

    def journal(self, company_id: int, refresh: bool = False):
        return self.query("api", "companies", company_id, "journal", refresh=refresh)

    def create_journal_entry(self, company_id: int, lines: list, date: Optional[str] = None,
                             memo: Optional[str] = None, status: str = "draft") -> Dict[str, Any]:
        """Create an entry after checking the lines balance locally."""
        validate_lines(lines)
        body = {"lines": lines, "memo": memo, "status": status}
        if date:
            body["date"] = date
        return self.mutate(
            "POST", f"api/companies/{company_id}/journal", json=body,
            invalidate=[("api", "companies", company_id)],
        )

    def post_journal_entry(self, company_id: int, entry_id: int) -> Dict[str, Any]:
        return self.mutate("POST", f"api/journal/{entry_id}/post", invalidate=[("api", "companies", company_id)])

    def reverse_journal_entry(self, company_id: int, entry_id: int, reason: Optional[str] = None):
        return self.mutate("POST", f"api/journal/{entry_id}/reverse", json={"reason": reason},
                           invalidate=[("api", "companies", company_id)])

    # ---- reports ----

    def _report(self, company_id: int, name: str, start_date=None, end_date=None, refresh=False):
        params = {k: v for k, v in (("start_date", start_date), ("end_date", end_date)) if v}
        return self.query("api", "companies", company_id, "reports", name, refresh=refresh, params=params or None)

    def profit_and_loss(self, company_id: int, start_date=None, end_date=None, refresh=False):
        return self._report(company_id, "profit-loss", start_date, end_date, refresh)

    def balance_sheet(self, company_id: int, start_date=None, end_date=None, refresh=False):
        return self._report(company_id, "balance-sheet", start_date, end_date, refresh)

    def vat_summary(self, company_id: int, start_date=None, end_date=None, refresh=False):
        return self._report(company_id, "vat-summary", start_date, end_date, refresh)

    def trial_balance(self, company_id: int, start_date=None, end_date=None, refresh=False):
        return self._report(company_id, "trial-balance", start_date, end_date, refresh)

    def ar_aging(self, company_id: int, as_of=None, refresh=False):
        params = {"as_of": as_of} if as_of else None
        return self.query("api", "companies", company_id, "reports", "aging", refresh=refresh, params=params)
