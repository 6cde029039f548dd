from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.models import SyncStatus, SyncStatusValue
from app.services.cache_upsert_service import (
    record_sync_status,
    upsert_customer,
    upsert_product,
    write_aggregated_products,
)
from app.services.catalog_aggregation_service import aggregate_availability, build_pricing_map
from app.services.erp_client import ErpClient, ErpError
from app.services.region_service import ALLOWED_LOCATIONS


logger = logging.getLogger(__name__)


class SyncType(str, Enum):
    CUSTOMERS = 'customers'
    PRODUCTS = 'products'
    AVAILABILITY = 'availability'
    ALL = 'all'


FULL_SYNC_STATUS_KEY = 'full_sync'


@dataclass(frozen=True)
class SyncResult:
    success: bool
    message: str
    records_processed: int = 0
    error: str | None = None
    status_code: int | None = None
    retry_after: float | None = None


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _modified_before(record: dict, since: datetime | None) -> bool:
    if since is None:
        return False
    modified = parse_timestamp(record.get('LastModified'))
    return modified is not None and modified < since


def format_address(address: dict | None) -> str | None:
    if not address:
        return None
    parts = [
        address.get('Line1'),
        address.get('Line2'),
        address.get('City') or address.get('Suburb'),
        address.get('State') or address.get('Province'),
        address.get('PostCode') or address.get('Zip'),
        address.get('Country'),
    ]
    joined = ', '.join(str(part).strip() for part in parts if part and str(part).strip())
    return joined or None


def normalize_customer(record: dict) -> dict:
    normalized = {
        'erp_customer_id': str(record.get('ID') or record.get('CustomerCode') or '').strip() or None,
        'company_name': record.get('Name') or record.get('CompanyName'),
        'terms': record.get('PaymentTerms') or record.get('Terms'),
        'price_tier': record.get('PriceTier') or record.get('CustomerGroup') or settings.default_price_tier,
        'default_address': None,
        'billing_address': None,
        'shipping_address': None,
        'contacts': [],
    }

    addresses = record.get('Addresses')
    if isinstance(addresses, list):
        addresses = [a for a in addresses if isinstance(a, dict)]
    if isinstance(addresses, list) and addresses:
        billing = next((a for a in addresses if a.get('Type') in {'Billing', 'Business'}), None)
        shipping = next((a for a in addresses if a.get('Type') in {'Shipping', 'Delivery'}), None)
        default = next((a for a in addresses if a.get('Default') is True), addresses[0])
        normalized['billing_address'] = format_address(billing)
        normalized['shipping_address'] = format_address(shipping)
        normalized['default_address'] = format_address(default)
    elif isinstance(record.get('Address'), dict):
        normalized['default_address'] = format_address(record['Address'])
        normalized['billing_address'] = normalized['default_address']

    contacts = record.get('Contacts')
    if isinstance(contacts, list) and contacts:
        normalized['contacts'] = [
            {
                'name': contact.get('Name') or contact.get('ContactName'),
                'email': contact.get('Email'),
                'phone': contact.get('Phone') or contact.get('Mobile'),
                'role': contact.get('Role') or contact.get('Position') or 'Contact',
            }
            for contact in contacts
            if isinstance(contact, dict)
            and (contact.get('Name') or contact.get('ContactName') or contact.get('Email'))
        ]
    elif record.get('ContactPerson'):
        normalized['contacts'] = [
            {
                'name': record.get('ContactPerson'),
                'email': record.get('Email'),
                'phone': record.get('Phone'),
                'role': 'Primary Contact',
            }
        ]

    return normalized


def sync_products(db: Session, client: ErpClient, since: datetime | None = None) -> int:
    products = [p for p in client.list_products() if not _modified_before(p, since)]
    pricing = build_pricing_map(products)
    for sku, info in pricing.items():
        upsert_product(
            db,
            sku=sku,
            name=info.name,
            brand=info.brand,
            barcode=info.barcode,
            image_url=info.image_url,
            category=info.category,
        )
    return len(pricing)


def sync_availability(db: Session, client: ErpClient, since: datetime | None = None) -> int:
    rows: list[dict] = []
    for location in ALLOWED_LOCATIONS:
        location_rows = client.list_product_availability(location=location)
        logger.info('Fetched %s availability rows for %s', len(location_rows), location)
        rows.extend(row for row in location_rows if not _modified_before(row, since))

    # Fetched separately from availability; the two feeds are not a consistent snapshot.
    pricing = build_pricing_map(client.list_products())
    aggregated = aggregate_availability(rows, pricing)
    return write_aggregated_products(db, aggregated)


def sync_customers(db: Session, client: ErpClient, since: datetime | None = None) -> int:
    processed = 0
    for record in client.list_customers():
        if _modified_before(record, since):
            continue
        normalized = normalize_customer(record)
        if not normalized['erp_customer_id']:
            logger.warning('Skipping customer without ERP id: %s', record.get('Name'))
            continue
        upsert_customer(db, normalized)
        processed += 1
        if processed % 50 == 0:
            logger.info('Processed %s customers...', processed)
    return processed


SYNC_RUNNERS: dict[SyncType, Callable[[Session, ErpClient, datetime | None], int]] = {
    SyncType.CUSTOMERS: sync_customers,
    SyncType.PRODUCTS: sync_products,
    SyncType.AVAILABILITY: sync_availability,
}


def _record_status_safely(session_factory, *, sync_type: str, status: SyncStatusValue, records: int, error: str | None) -> None:
    try:
        with session_factory() as db:
            record_sync_status(db, sync_type=sync_type, status=status, records_processed=records, error_message=error)
            db.commit()
    except SQLAlchemyError:
        logger.exception('Failed to update sync status for %s', sync_type)


def run_sync(
    sync_type: SyncType,
    *,
    client: ErpClient | None = None,
    session_factory=SessionLocal,
    since: datetime | None = None,
) -> SyncResult:
    sync_type = SyncType(sync_type)
    if sync_type == SyncType.ALL:
        return full_sync(client=client, session_factory=session_factory, since=since)

    runner = SYNC_RUNNERS[sync_type]
    logger.info('Starting %s sync%s', sync_type.value, f' since {since.isoformat()}' if since else '')
    try:
        erp = client or ErpClient.from_settings()
        with session_factory() as db:
            processed = runner(db, erp, since)
            record_sync_status(
                db,
                sync_type=sync_type.value,
                status=SyncStatusValue.SUCCESS,
                records_processed=processed,
            )
            db.commit()
    except Exception as exc:
        if isinstance(exc, (ErpError, SQLAlchemyError, ValueError)):
            logger.exception('%s sync failed', sync_type.value.capitalize())
        else:
            logger.exception('%s sync failed with unexpected error', sync_type.value.capitalize())
        _record_status_safely(
            session_factory,
            sync_type=sync_type.value,
            status=SyncStatusValue.ERROR,
            records=0,
            error=str(exc),
        )
        return SyncResult(
            success=False,
            message=f'{sync_type.value.capitalize()} sync failed',
            records_processed=0,
            error=str(exc),
            status_code=getattr(exc, 'status', None),
            retry_after=getattr(exc, 'retry_after', None),
        )

    logger.info('%s sync complete: %s records', sync_type.value.capitalize(), processed)
    return SyncResult(
        success=True,
        message=f'Successfully synced {processed} {sync_type.value}',
        records_processed=processed,
    )


def full_sync(
    *,
    client: ErpClient | None = None,
    session_factory=SessionLocal,
    since: datetime | None = None,
) -> SyncResult:
    logger.info('Starting full system sync')
    results = [
        run_sync(sync_type, client=client, session_factory=session_factory, since=since)
        for sync_type in (SyncType.PRODUCTS, SyncType.CUSTOMERS, SyncType.AVAILABILITY)
    ]
    total = sum(result.records_processed for result in results if result.success)
    errors = [result.error or result.message for result in results if not result.success]

    if not errors:
        _record_status_safely(
            session_factory, sync_type=FULL_SYNC_STATUS_KEY, status=SyncStatusValue.SUCCESS, records=total, error=None
        )
        return SyncResult(success=True, message=f'Full sync complete: {total} total records', records_processed=total)

    joined = '; '.join(errors)
    _record_status_safely(
        session_factory, sync_type=FULL_SYNC_STATUS_KEY, status=SyncStatusValue.PARTIAL, records=total, error=joined
    )
    return SyncResult(
        success=False,
        message=f'Partial sync: {total} records, {len(errors)} errors',
        records_processed=total,
        error=joined,
    )


def list_sync_status(db: Session) -> list[dict]:
    rows = db.execute(select(SyncStatus).order_by(SyncStatus.sync_type.asc())).scalars().all()
    return [
        {
            'sync_type': row.sync_type,
            'status': row.status.value,
            'records_processed': row.records_processed,
            'error_message': row.error_message,
            'updated_at': row.updated_at,
        }
        for row in rows
    ]
