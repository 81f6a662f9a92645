import httpx
from typing import Dict, Any, List, Optional

from storefront.errors import PersistenceError
from storefront.utils.logger import get_logger

logger = get_logger("utils.supabase_client")

_OPERATORS = ("eq", "neq", "gt", "lt", "gte", "lte", "like", "ilike", "in", "is", "not")


def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, val in (filters or {}).items():
        if isinstance(val, str) and "." in val and val.split(".")[0] in _OPERATORS:
            params[key] = val
        else:
            params[key] = f"eq.{val}"
    return params


class SupabaseClient:
    """
    Lightweight async client for the Supabase REST (PostgREST) API.

    Every failure is logged and re-raised as ``PersistenceError`` so callers
    never mistake a failed read for an empty table.
    """
    def __init__(self, url: str, key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url or not key:
            logger.warning("SUPABASE_URL or SUPABASE_KEY not set.")

        self.url = url
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation"
        }
        self.client = httpx.AsyncClient(base_url=url, headers=self.headers, timeout=30.0, transport=transport)

    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None, select: str = "*", limit: Optional[int] = None, order: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Query a Supabase table.
        """
        params = {"select": select}
        params.update(_filter_params(filters))

        if limit:
            params["limit"] = str(limit)

        if order:
            params["order"] = order

        try:
            response = await self.client.get(f"/rest/v1/{table}", params=params)
            response.raise_for_status()
            rows = response.json()
            return rows if isinstance(rows, list) else []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase select failed on {table}: {e}")
            raise PersistenceError(f"select on {table} failed: {e}") from e

    async def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """
        Exact row count via ``Prefer: count=exact`` (read from Content-Range).
        """
        params = {"select": "id", "limit": "1"}
        params.update(_filter_params(filters))
        try:
            response = await self.client.get(
                f"/rest/v1/{table}", params=params, headers={"Prefer": "count=exact"}
            )
            response.raise_for_status()
            content_range = response.headers.get("content-range", "")
            total = content_range.rsplit("/", 1)[-1]
            if not total.isdigit():
                raise ValueError(f"unexpected Content-Range {content_range!r}")
            return int(total)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase count failed on {table}: {e}")
            raise PersistenceError(f"count on {table} failed: {e}") from e

    async def insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(f"/rest/v1/{table}", json=payload)
            response.raise_for_status()
            rows = response.json()
            return rows[0] if isinstance(rows, list) and rows else {}
        except httpx.HTTPStatusError as e:
            logger.error(f"Supabase insert failed on {table}: {e.response.status_code} {e.response.text}")
            raise PersistenceError(f"insert on {table} failed: {e.response.text}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase insert failed on {table}: {e}")
            raise PersistenceError(f"insert on {table} failed: {e}") from e

    async def update(self, table: str, filters: Dict[str, Any], payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            response = await self.client.patch(f"/rest/v1/{table}", params=_filter_params(filters), json=payload)
            response.raise_for_status()
            rows = response.json()
            return rows if isinstance(rows, list) else []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase update failed on {table}: {e}")
            raise PersistenceError(f"update on {table} failed: {e}") from e

    async def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            response = await self.client.delete(f"/rest/v1/{table}", params=_filter_params(filters))
            response.raise_for_status()
            rows = response.json() if response.content else []
            return rows if isinstance(rows, list) else []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase delete failed on {table}: {e}")
            raise PersistenceError(f"delete on {table} failed: {e}") from e

    async def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """
        Call a Supabase RPC function.
        """
        try:
            response = await self.client.post(f"/rest/v1/rpc/{function}", json=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Supabase RPC failed for {function}: {e.response.status_code} {e.response.text}")
            raise PersistenceError(f"rpc {function} failed: {e.response.text}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Supabase RPC failed for {function}: {e}")
            raise PersistenceError(f"rpc {function} failed: {e}") from e

    async def aclose(self) -> None:
        await self.client.aclose()
