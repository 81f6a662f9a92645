"""
Records and backing stores (in-memory, Supabase REST, SQL) for catalog, coupons and orders.
"""
