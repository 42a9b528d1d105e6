# Overview: Service-layer access to shops and the service-type price list used by orders.

from __future__ import annotations

from ..extensions import db
from ..models import Shop, ServiceType
from ..validation import NotFoundError, ValidationError, MAX_AMOUNT_CENTS


class ShopNotFound(NotFoundError):
    """Raised when a shop id does not exist."""


class ServiceTypeNotFound(NotFoundError):
    """Raised when a service type is unknown or belongs to another shop."""


def create_shop(name: str, code: str | None = None) -> Shop:
    if not name or not name.strip():
        raise ValidationError("Shop name is required")
    shop = Shop(name=name.strip(), code=code)
    db.session.add(shop)
    db.session.commit()
    return shop


def get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise ShopNotFound(f"Shop {shop_id} not found")
    return shop


def create_service_type(shop_id: int, name: str, price_cents: int) -> ServiceType:
    get_shop(shop_id)
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise ValidationError("price_cents must be a non-negative integer")
    if price_cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"price_cents cannot exceed {MAX_AMOUNT_CENTS}")

    service_type = ServiceType(shop_id=shop_id, name=name, price_cents=price_cents, is_active=True)
    db.session.add(service_type)
    db.session.commit()
    return service_type


def set_service_type_price(service_type_id: int, price_cents: int) -> ServiceType:
    """Price-list edit. Orders already created keep the price they copied."""
    service_type = db.session.get(ServiceType, service_type_id)
    if not service_type:
        raise ServiceTypeNotFound(f"Service type {service_type_id} not found")
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise ValidationError("price_cents must be a non-negative integer")
    service_type.price_cents = price_cents
    db.session.commit()
    return service_type


def get_service_type_for_shop(shop_id: int, service_type_id: int) -> ServiceType:
    service_type = db.session.get(ServiceType, service_type_id)
    if not service_type or service_type.shop_id != shop_id:
        raise ServiceTypeNotFound(f"Service type {service_type_id} not found in shop {shop_id}")
    if not service_type.is_active:
        raise ValidationError(f"Service type {service_type.name} is not offered anymore")
    return service_type
