"""Consumers identified by mobile number."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from extensions import db
from models.customer import Customer
from utils.db_helpers import insert_ignore


def get_or_create(tenant_id: int, phone_e164: str, now: Optional[datetime] = None) -> Customer:
    """Return the tenant's customer for ``phone_e164``, creating it if missing.

    Does not commit.
    """
    now = now or datetime.now()
    insert_ignore(Customer, {
        'tenant_id': tenant_id,
        'phone_e164': phone_e164,
        'phone_verified_at': now,
        'created_at': now,
        'updated_at': now,
    })
    return (
        Customer.query
        .filter_by(tenant_id=tenant_id, phone_e164=phone_e164)
        .populate_existing()
        .one()
    )


def find(tenant_id: int, customer_id: int) -> Optional[Customer]:
    customer = db.session.get(Customer, customer_id) if customer_id else None
    if customer is None or customer.tenant_id != tenant_id:
        return None
    return customer
