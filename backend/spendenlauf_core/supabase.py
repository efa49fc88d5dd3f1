from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx


logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """A request to Supabase failed.

    ``code`` is the PostgREST/Postgres error code when the response carried one
    (``23505`` unique violation, ``23514`` check violation, ...).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.detail = detail


class SupabaseBackend:
    """Row and RPC access to the Supabase REST API."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        schema: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.supabase_url = url if url is not None else os.getenv("SUPABASE_URL", "")
        self.supabase_key = key if key is not None else (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = schema if schema is not None else os.getenv("SUPABASE_SCHEMA", "public")
        if timeout is None:
            try:
                timeout = float(os.getenv("SUPABASE_TIMEOUT", "10.0"))
            except ValueError:
                timeout = 10.0
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # Table access

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": columns}
        params.update(self._filter_params(filters))
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit

        rows = self._request("GET", self._endpoint(table), params=params, headers=self._headers())
        return self._rows(rows)

    def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        params: Dict[str, Any] = {"select": "id"}
        params.update(self._filter_params(filters))
        headers = self._headers("count=exact")
        headers["Range-Unit"] = "items"
        headers["Range"] = "0-0"

        response = self._send("HEAD", self._endpoint(table), params=params, headers=headers)
        content_range = response.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1] if "/" in content_range else ""
        try:
            return int(total)
        except ValueError:
            raise BackendError(f"Unexpected count response for {table}: {content_range!r}")

    def insert(self, table: str, rows: Dict[str, Any] | Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert one row or a batch; a batch is a single request and fails as a whole."""
        payload: Any = rows if isinstance(rows, dict) else list(rows)
        headers = self._headers("return=representation", write=True)
        result = self._request("POST", self._endpoint(table), params={"select": "*"}, json=payload, headers=headers)
        return self._rows(result)

    def update(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers("return=representation", write=True)
        params = {"id": f"eq.{row_id}", "select": "*"}
        rows = self._rows(self._request("PATCH", self._endpoint(table), params=params, json=values, headers=headers))
        if not rows:
            raise BackendError(f"No {table} row with id {row_id}", status_code=404)
        return rows[0]

    def delete(self, table: str, row_id: str) -> None:
        headers = self._headers("return=minimal", write=True)
        self._request("DELETE", self._endpoint(table), params={"id": f"eq.{row_id}"}, headers=headers)

    # ------------------------------------------------------------------
    # RPC and edge functions

    def rpc(self, name: str, args: Dict[str, Any] | None = None) -> Any:
        endpoint = f"{self.supabase_url.rstrip('/')}/rest/v1/rpc/{name}"
        return self._request("POST", endpoint, json=args or {}, headers=self._headers(write=True))

    def invoke_function(self, name: str, payload: Dict[str, Any]) -> Any:
        endpoint = f"{self.supabase_url.rstrip('/')}/functions/v1/{name}"
        return self._request("POST", endpoint, json=payload, headers=self._headers(write=True))

    # ---- internal helpers -------------------------------------------------

    def _endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _headers(self, prefer: str | None = None, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if write:
            headers["Content-Type"] = "application/json"
            if self.supabase_schema and self.supabase_schema != "public":
                headers["Content-Profile"] = self.supabase_schema
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _filter_params(filters: Mapping[str, Any] | None) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for column, value in (filters or {}).items():
            if value is None:
                params[column] = "is.null"
            elif isinstance(value, bool):
                params[column] = f"eq.{str(value).lower()}"
            else:
                params[column] = f"eq.{value}"
        return params

    @staticmethod
    def _rows(payload: Any) -> List[Dict[str, Any]]:
        if isinstance(payload, list):
            return [row for row in payload if isinstance(row, dict)]
        if isinstance(payload, dict):
            return [payload]
        return []

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        response = self._send(method, endpoint, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        if not self.configured:
            raise RuntimeError("Supabase configuration is incomplete")

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, endpoint, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as exc:
            code, detail = self._extract_supabase_error(exc.response)
            status_code = exc.response.status_code if exc.response is not None else None
            logger.warning("Supabase %s %s failed (%s): %s", method, endpoint, status_code, detail)
            raise BackendError(
                detail or f"Supabase rejected {method} request ({status_code})",
                status_code=status_code,
                code=code,
                detail=detail,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s %s unavailable (%s)", method, endpoint, exc)
            raise BackendError(f"Supabase request failed: {exc}") from exc

    @staticmethod
    def _extract_supabase_error(response: httpx.Response | None) -> tuple[Optional[str], Optional[str]]:
        if response is None:
            return None, None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return None, text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if not isinstance(payload, dict):
            return None, None

        code = payload.get("code")
        code = str(code).strip() if code is not None and str(code).strip() else None
        for key in ("message", "detail", "error", "hint"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return code, value.strip()
        return code, None
