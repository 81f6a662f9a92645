"""
Back-office coupon management.

Admins enter amounts in major units (e.g. ``150`` taka or ``12.5`` percent);
``validate_draft`` checks the form and converts it to a ``Coupon`` in minor
units. Usage counts shown in the list are derived from orders through the
coupon store, the same counts checkout uses.

Roles:
  super_admin    everything, including delete
  order_manager  create, edit, duplicate, toggle
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from storefront.data.base import CouponStore
from storefront.data.records import (
    Coupon,
    DiscountType,
    optional_limit,
    normalize_code,
    parse_timestamp,
)
from storefront.errors import NotFoundError, PermissionDeniedError, ValidationError
from storefront.pricing.money import Rate, to_minor_units
from storefront.utils.logger import get_logger

logger = get_logger("coupons.admin")

SUPER_ADMIN_ROLE = "super_admin"
ORDER_MANAGER_ROLE = "order_manager"
ADMIN_ROLES = (SUPER_ADMIN_ROLE, ORDER_MANAGER_ROLE)

STATUS_FILTERS = ("all", "active", "inactive")


@dataclass
class CouponDraft:
    """Coupon form input; money fields are in major units."""
    code: str
    discount_type: str = "percent"
    amount: Rate = 0
    min_subtotal: Rate = 0
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    starts_at: Any = None
    ends_at: Any = None
    is_active: bool = True


@dataclass(frozen=True)
class CouponWithUsage:
    coupon: Coupon
    usage_count: int


def validate_draft(draft: CouponDraft, minor_per_major: int = 100) -> Coupon:
    """
    Check a coupon form and build the ``Coupon`` to store.

    Raises:
        ValidationError: with reason ``INVALID_COUPON`` and a form message.
    """
    code = normalize_code(draft.code)
    if not code:
        raise ValidationError("INVALID_COUPON", "Code is required")

    try:
        dtype = DiscountType(str(draft.discount_type).lower())
    except ValueError:
        raise ValidationError("INVALID_COUPON", f"Unknown discount type: {draft.discount_type}")

    try:
        amount = Decimal(str(draft.amount))
        if not amount.is_finite():
            raise ValueError("Amount must be a number")
        min_subtotal = to_minor_units(draft.min_subtotal or 0, minor_per_major)
        max_uses = optional_limit(draft.max_uses)
        max_uses_per_user = optional_limit(draft.max_uses_per_user)
        starts_at = parse_timestamp(draft.starts_at)
        ends_at = parse_timestamp(draft.ends_at)
    except (TypeError, ValueError, ArithmeticError) as e:
        raise ValidationError("INVALID_COUPON", str(e)) from e

    if amount <= 0:
        raise ValidationError("INVALID_COUPON", "Amount must be greater than 0")
    if dtype == DiscountType.PERCENT and amount > 100:
        raise ValidationError("INVALID_COUPON", "Percentage cannot exceed 100%")
    if (max_uses is not None and max_uses < 0) or (max_uses_per_user is not None and max_uses_per_user < 0):
        raise ValidationError("INVALID_COUPON", "Usage limits cannot be negative")
    if starts_at and ends_at and ends_at <= starts_at:
        raise ValidationError("INVALID_COUPON", "End date must be after start date")

    if dtype == DiscountType.FIXED:
        stored_amount = to_minor_units(draft.amount, minor_per_major)
        if stored_amount <= 0:
            raise ValidationError("INVALID_COUPON", "Amount must be greater than 0")
    else:
        stored_amount = amount

    return Coupon(
        code=code,
        discount_type=dtype,
        amount=stored_amount,
        min_subtotal=min_subtotal,
        max_uses=max_uses,
        max_uses_per_user=max_uses_per_user,
        starts_at=starts_at,
        ends_at=ends_at,
        is_active=bool(draft.is_active),
    )


def filter_coupons(
    coupons: Iterable[CouponWithUsage],
    search: str = "",
    status: str = "all",
    discount_type: str = "all",
) -> List[CouponWithUsage]:
    """Case-insensitive code search plus status and type filters."""
    needle = (search or "").strip().lower()
    status = (status or "all").lower()
    dtype = (discount_type or "all").lower()
    if status not in STATUS_FILTERS:
        raise ValidationError("INVALID_FILTER", f"Unknown status filter: {status}")

    result = []
    for item in coupons:
        c = item.coupon
        if needle and needle not in c.code.lower():
            continue
        if status == "active" and not c.is_active:
            continue
        if status == "inactive" and c.is_active:
            continue
        if dtype != "all" and c.discount_type.value != dtype:
            continue
        result.append(item)
    return result


class CouponAdmin:
    """Coupon CRUD gated on the caller's back-office roles."""

    def __init__(self, repo: CouponStore, roles: Iterable[str] = (), minor_per_major: int = 100):
        self._repo = repo
        self._roles = frozenset(r.strip() for r in roles if r and r.strip())
        self._minor = minor_per_major

    @property
    def is_super_admin(self) -> bool:
        return SUPER_ADMIN_ROLE in self._roles

    @property
    def can_manage(self) -> bool:
        return any(role in self._roles for role in ADMIN_ROLES)

    def _require_manage(self, action: str) -> None:
        if not self.can_manage:
            logger.info("coupon_admin: action=%s result=forbidden roles=%s", action, sorted(self._roles))
            raise PermissionDeniedError(action, " or ".join(ADMIN_ROLES))

    async def _get(self, coupon_id: str) -> Coupon:
        coupon = await self._repo.get_coupon(coupon_id)
        if coupon is None:
            raise NotFoundError("coupon", coupon_id)
        return coupon

    async def list_coupons(
        self,
        search: str = "",
        status: str = "all",
        discount_type: str = "all",
    ) -> List[CouponWithUsage]:
        self._require_manage("list_coupons")
        coupons = await self._repo.list_coupons()
        with_usage = [
            CouponWithUsage(c, await self._repo.count_usage(c.id) if c.id else 0)
            for c in coupons
        ]
        return filter_coupons(with_usage, search, status, discount_type)

    async def create(self, draft: CouponDraft) -> Coupon:
        self._require_manage("create")
        coupon = validate_draft(draft, self._minor)
        created = await self._repo.insert_coupon(coupon)
        logger.info("coupon_admin: action=create code=%s id=%s", created.code, created.id)
        return created

    async def update(self, coupon_id: str, draft: CouponDraft) -> Coupon:
        self._require_manage("update")
        await self._get(coupon_id)
        coupon = validate_draft(draft, self._minor)
        updated = await self._repo.update_coupon(coupon_id, coupon)
        logger.info("coupon_admin: action=update code=%s id=%s", updated.code, coupon_id)
        return updated

    async def duplicate(self, coupon_id: str) -> Coupon:
        """Copy a coupon as ``<CODE>_COPY_<n>``, inactive until reviewed."""
        self._require_manage("duplicate")
        source = await self._get(coupon_id)
        taken = {c.code for c in await self._repo.list_coupons()}
        n = 1
        while f"{source.code}_COPY_{n}" in taken:
            n += 1
        copy = source.with_changes(
            id=None,
            code=f"{source.code}_COPY_{n}",
            is_active=False,
            created_at=None,
            updated_at=None,
        )
        created = await self._repo.insert_coupon(copy)
        logger.info("coupon_admin: action=duplicate source=%s code=%s", source.code, created.code)
        return created

    async def toggle_active(self, coupon_id: str) -> Coupon:
        self._require_manage("toggle_active")
        coupon = await self._get(coupon_id)
        updated = await self._repo.update_coupon(coupon_id, coupon.with_changes(is_active=not coupon.is_active))
        logger.info("coupon_admin: action=toggle_active code=%s is_active=%s", updated.code, updated.is_active)
        return updated

    async def delete(self, coupon_id: str) -> None:
        if not self.is_super_admin:
            logger.info("coupon_admin: action=delete result=forbidden roles=%s", sorted(self._roles))
            raise PermissionDeniedError("delete", SUPER_ADMIN_ROLE)
        await self._repo.delete_coupon(coupon_id)
        logger.info("coupon_admin: action=delete id=%s", coupon_id)


def is_live(coupon: Coupon, now: datetime) -> bool:
    """Active and inside its date window (for list badges)."""
    now = parse_timestamp(now)
    if not coupon.is_active:
        return False
    if coupon.starts_at is not None and now < coupon.starts_at:
        return False
    if coupon.ends_at is not None and now > coupon.ends_at:
        return False
    return True
