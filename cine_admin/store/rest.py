"""REST gateway for the hosted database (PostgREST dialect).

Every call maps to one HTTP request against ``{url}/rest/v1/{table}``:

    GET     select rows     (select=, filters, order=, limit=)
    HEAD    count rows      (Prefer: count=exact, read from Content-Range)
    POST    insert rows     (Prefer: return=representation)
    PATCH   update rows     (filters pick the rows)
    DELETE  delete rows     (filters pick the rows)

Errors come back as JSON ``{"message", "code", "details", "hint"}`` and are
raised as RemoteStoreError with the message untouched.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import requests

from ..utils.error_handling import RemoteStoreError

logger = logging.getLogger(__name__)

FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in", "is")

# (column, ascending)
OrderSpec = Sequence[Tuple[str, bool]]


class Filter(NamedTuple):
    """A ``column=op.value`` predicate."""

    column: str
    op: str
    value: Any

    def to_param(self) -> Tuple[str, str]:
        """Render as a query string pair.

        Returns:
            (column, "op.value") tuple
        """
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")
        if self.op == "in":
            items = ",".join(format_value(v) for v in self.value)
            return self.column, f"in.({items})"
        return self.column, f"{self.op}.{format_value(self.value)}"


def format_value(value: Any) -> str:
    """Format a Python value for a PostgREST filter."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def build_query_params(
    select: Optional[str] = None,
    filters: Optional[Sequence[Filter]] = None,
    order: Optional[OrderSpec] = None,
    limit: Optional[int] = None,
) -> List[Tuple[str, str]]:
    """Build the query string for a table request.

    Args:
        select: Column list, may contain embeds such as ``*,sala:sala_id(nombre)``
        filters: Row predicates (ANDed)
        order: Ordering keys as (column, ascending) pairs
        limit: Maximum number of rows

    Returns:
        List of query parameters, in a stable order
    """
    params: List[Tuple[str, str]] = []
    if select:
        # PostgREST rejects whitespace inside embeds
        params.append(("select", "".join(select.split())))
    for flt in filters or ():
        params.append(flt.to_param())
    if order:
        params.append(
            (
                "order",
                ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in order),
            )
        )
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


class RemoteStore:
    """Client for the database REST surface."""

    def __init__(
        self,
        url: str,
        api_key: str,
        schema: str = "public",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        access_token: Optional[str] = None,
    ):
        """Initialize remote store client.

        Args:
            url: Project URL (e.g. https://xyz.supabase.co)
            api_key: Anonymous or service API key
            schema: Database schema exposed by the API
            timeout: Request timeout in seconds
            session: requests session to reuse (created if None)
            access_token: Bearer token (defaults to the API key)
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self.timeout = timeout
        self._session = session or requests.Session()
        self._access_token = access_token or api_key

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    def _headers(self, prefer: Optional[str] = None, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "Accept-Profile": self.schema,
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Content-Profile"] = self.schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        body: Any = None,
        prefer: Optional[str] = None,
    ) -> requests.Response:
        """Send one request and raise RemoteStoreError on failure.

        Args:
            method: HTTP method
            table: Table or view name
            params: Query string parameters
            body: JSON body for writes
            prefer: Value of the Prefer header

        Returns:
            Successful response
        """
        write = body is not None
        data = json.dumps(body, default=_json_default) if write else None
        logger.debug("%s %s %s", method, table, params)

        try:
            response = self._session.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                data=data,
                headers=self._headers(prefer=prefer, write=write),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteStoreError(str(e)) from e

        if response.status_code >= 400:
            raise self._error_from_response(response)
        return response

    @staticmethod
    def _error_from_response(response: requests.Response) -> RemoteStoreError:
        """Build an error carrying the backend message verbatim."""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("message"):
            return RemoteStoreError(
                payload["message"],
                status_code=response.status_code,
                code=payload.get("code"),
                details=payload.get("details"),
                hint=payload.get("hint"),
            )
        message = (response.text or "").strip() or f"HTTP {response.status_code}"
        return RemoteStoreError(message, status_code=response.status_code)

    @staticmethod
    def _rows(response: requests.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Invalid JSON response: {e}") from e
        if isinstance(data, dict):
            return [data]
        return list(data or [])

    # === Reads ===

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Sequence[Filter]] = None,
        order: Optional[OrderSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Select rows from a table or view.

        Args:
            table: Table or view name
            columns: Select expression (embeds allowed)
            filters: Row predicates
            order: Ordering keys
            limit: Maximum number of rows

        Returns:
            List of row dicts
        """
        params = build_query_params(columns, filters, order, limit)
        return self._rows(self._request("GET", table, params))

    def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Sequence[Filter]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Select the first matching row, or None."""
        rows = self.select(table, columns, filters, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Sequence[Filter]] = None) -> int:
        """Count matching rows without transferring them.

        Args:
            table: Table name
            filters: Row predicates

        Returns:
            Exact row count
        """
        params = build_query_params("*", filters)
        response = self._request("HEAD", table, params, prefer="count=exact")
        content_range = response.headers.get("Content-Range", "")
        # "0-24/25" or "*/0"
        _, _, total = content_range.partition("/")
        try:
            return int(total)
        except ValueError:
            raise RemoteStoreError(f"Missing row count in response: {content_range!r}")

    # === Writes ===

    def insert(
        self,
        table: str,
        values: Union[Dict[str, Any], List[Dict[str, Any]]],
        columns: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Insert one or more rows.

        Args:
            table: Table name
            values: Row or rows to insert
            columns: Select expression for the returned rows (embeds allowed)

        Returns:
            Inserted rows as stored (server defaults and keys filled in)
        """
        params = build_query_params(columns)
        response = self._request(
            "POST", table, params, body=values, prefer="return=representation"
        )
        return self._rows(response)

    def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Sequence[Filter],
        columns: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Update the rows matching ``filters``.

        Returns:
            Updated rows
        """
        if not filters:
            raise ValueError("Refusing to update without filters")
        params = build_query_params(columns, filters=filters)
        response = self._request(
            "PATCH", table, params, body=values, prefer="return=representation"
        )
        return self._rows(response)

    def delete(self, table: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        """Delete the rows matching ``filters``.

        Returns:
            Deleted rows
        """
        if not filters:
            raise ValueError("Refusing to delete without filters")
        params = build_query_params(filters=filters)
        response = self._request("DELETE", table, params, prefer="return=representation")
        return self._rows(response)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()
