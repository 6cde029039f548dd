from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Region:
    name: str
    label: str
    location_codes: tuple[str, ...]
    dispatch_location: str


REGIONS: tuple[Region, ...] = (
    Region(name='JHB', label='JHB Warehouse', location_codes=('B-VDB', 'S-POM'), dispatch_location='B-VDB'),
    Region(name='CPT', label='CPT Warehouse', location_codes=('B-CPT', 'S-CPT'), dispatch_location='B-CPT'),
    Region(name='BFN', label='BFN Warehouse', location_codes=('S-BFN',), dispatch_location='S-BFN'),
)

REGION_NAMES: tuple[str, ...] = tuple(region.name for region in REGIONS)
REGION_BY_NAME: dict[str, Region] = {region.name: region for region in REGIONS}
REGION_BY_LOCATION: dict[str, str] = {
    code: region.name for region in REGIONS for code in region.location_codes
}
ALLOWED_LOCATIONS: tuple[str, ...] = tuple(sorted(REGION_BY_LOCATION))

AVAILABLE_CAP = 20


def region_for_location(location: str | None) -> str | None:
    if not location:
        return None
    return REGION_BY_LOCATION.get(location.strip())


def resolve_region_name(value: str | None) -> str | None:
    """Map a cart warehouse value ('JHB', 'JHB Warehouse', 'b-vdb') to a region name."""
    if not value:
        return None
    clean = value.strip()
    by_location = region_for_location(clean.upper())
    if by_location:
        return by_location
    upper = clean.upper()
    for region in REGIONS:
        if upper == region.name or upper == region.label.upper() or region.name in upper.split():
            return region.name
    return None


def dispatch_location_for(value: str | None) -> str | None:
    region_name = resolve_region_name(value)
    if not region_name:
        return None
    return REGION_BY_NAME[region_name].dispatch_location


def cap_available(quantity) -> str:
    qty = int(quantity or 0)
    if qty >= AVAILABLE_CAP:
        return f'{AVAILABLE_CAP}+'
    return str(qty)
