"""Field derivation from raw HaloPSA records.

Each local field is resolved from an ordered chain of dotted paths into the
raw record: the caller's mapping first (organizations only), then the
alternate names observed across HaloPSA versions. The first non-empty
value wins. Absent fields always come back as ``""``, never None.
"""

from typing import Any, Dict, Iterable, Mapping, Optional

from halosync.sync.models import FieldMapping

DerivedFields = Dict[str, str]

ORGANIZATION_FALLBACKS: Dict[str, tuple] = {
    "name": ("name", "client_name"),
    "email": ("email", "main_email"),
    "phone": ("main_phone", "phone_number", "phonenumber"),
    "address": ("address", "address_line_1", "billing_address_line_1"),
    "city": ("city",),
    "state": ("county", "state"),
    "zip": ("postcode",),
}

CONTACT_FALLBACKS: Dict[str, tuple] = {
    "name": ("name", "username"),
    "email": ("emailaddress", "email"),
    "phone": ("phonenumber", "phone", "mobile_number"),
    "notes": ("notes",),
}

# Address blocks in the order they are trusted
_SITE_BLOCKS = ("client", "delivery_address", "invoice_address")

SITE_FALLBACKS: Dict[str, tuple] = {
    "address": tuple(f"{b}.line1" for b in _SITE_BLOCKS) + ("line1",),
    "city": tuple(f"{b}.city" for b in _SITE_BLOCKS) + ("city",),
    "state": (
        "client.county",
        "client.state",
        "delivery_address.state",
        "delivery_address.county",
        "invoice_address.state",
        "invoice_address.county",
        "state",
        "county",
    ),
    "zip": tuple(f"{b}.postcode" for b in _SITE_BLOCKS) + ("postcode",),
    "notes": ("notes",),
}


def get_field(record: Optional[Mapping[str, Any]], path: Optional[str]) -> str:
    """Resolve a dotted path into a record as a string.

    Missing paths, None and non-scalar values (dicts, lists) yield ``""``.
    Numbers are stringified; booleans become ``"true"``/``"false"``.

    Example:
        >>> get_field({"address": {"line1": "1 Main St"}}, "address.line1")
        '1 Main St'
    """
    if not record or not path:
        return ""

    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return ""
        current = current[part]

    if current is None or isinstance(current, (dict, list, tuple)):
        return ""
    if isinstance(current, bool):
        return "true" if current else "false"
    return str(current)


def first_non_empty(record: Optional[Mapping[str, Any]], paths: Iterable[Optional[str]]) -> str:
    """Return the first non-empty value along ``paths``, or ``""``."""
    for path in paths:
        value = get_field(record, path)
        if value:
            return value
    return ""


def derive_organization_fields(
    raw: Mapping[str, Any],
    mapping: Optional[FieldMapping] = None,
) -> DerivedFields:
    """Derive name/contact/address fields for an organization."""
    mapping = mapping or FieldMapping()
    derived = {}
    for field_name, fallbacks in ORGANIZATION_FALLBACKS.items():
        mapped_path = getattr(mapping, field_name, None)
        derived[field_name] = first_non_empty(raw, (mapped_path,) + fallbacks)
    return derived


def derive_contact_fields(raw: Mapping[str, Any]) -> DerivedFields:
    """Derive name/email/phone/notes for a contact."""
    return {name: first_non_empty(raw, chain) for name, chain in CONTACT_FALLBACKS.items()}


def has_site_address(raw: Mapping[str, Any]) -> bool:
    """Whether a listed site already carries any address line."""
    return bool(first_non_empty(raw, SITE_FALLBACKS["address"]))


def derive_site_fields(
    listed: Mapping[str, Any],
    detail: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Derive site fields from the detail record, falling back to the listing.

    Name prefers the detail record and falls back to the listed one; every
    other field comes from whichever record is authoritative (detail when
    fetched). ``is_default`` is True only for a literal JSON ``true``.
    """
    source = detail if detail is not None else listed
    derived: Dict[str, Any] = {
        "name": get_field(source, "name") or get_field(listed, "name"),
    }
    for field_name, chain in SITE_FALLBACKS.items():
        derived[field_name] = first_non_empty(source, chain)
    derived["is_default"] = source.get("is_default") is True
    return derived
