"""
Backend selection.

Prefers DATABASE_URL (SQLAlchemy, bypasses RLS) over SUPABASE_URL + key
(REST API); with neither set the engine runs on in-memory stores.
"""
from __future__ import annotations

from dataclasses import dataclass

from storefront.core.config import StorefrontConfig
from storefront.data.base import CatalogStore, CouponStore, OrderStore
from storefront.data.memory import InMemoryCatalogStore, InMemoryCouponStore, InMemoryOrderStore
from storefront.utils.logger import get_logger

logger = get_logger("data.factory")


@dataclass
class Stores:
    catalog: CatalogStore
    coupons: CouponStore
    orders: OrderStore
    backend: str


def in_memory_stores() -> Stores:
    orders = InMemoryOrderStore()
    return Stores(
        catalog=InMemoryCatalogStore(),
        coupons=InMemoryCouponStore(orders),
        orders=orders,
        backend="memory",
    )


def get_stores(config: StorefrontConfig) -> Stores:
    """Build the stores for the configured backend."""
    minor = config.minor_units_per_major
    if config.database_url:
        from storefront.data.sql_store import (
            SQLCatalogStore, SQLCouponStore, SQLOrderStore, make_engine,
        )
        engine = make_engine(config.database_url)
        logger.info("Using SQLAlchemy stores via DATABASE_URL")
        return Stores(
            catalog=SQLCatalogStore(engine, minor),
            coupons=SQLCouponStore(engine, minor),
            orders=SQLOrderStore(engine, minor, enforce_cap=config.enforce_coupon_cap),
            backend="sql",
        )
    if config.supabase_url and config.supabase_key:
        from storefront.data.supabase_store import (
            SupabaseCatalogStore, SupabaseCouponStore, SupabaseOrderStore,
        )
        from storefront.utils.supabase_client import SupabaseClient
        client = SupabaseClient(config.supabase_url, config.supabase_key)
        logger.info("Using Supabase REST stores")
        return Stores(
            catalog=SupabaseCatalogStore(client),
            coupons=SupabaseCouponStore(client, minor),
            orders=SupabaseOrderStore(client, minor),
            backend="supabase",
        )
    logger.info("DATABASE_URL and SUPABASE_URL not set, using in-memory stores")
    return in_memory_stores()
