"""
Core entity data models for owner resolution
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from owner_resolution.core.errors import EntitySerializationError


class SourceTag(str, Enum):
    """Source system a record came from"""
    PRIMARY = "PRIMARY"        # municipal assessor feed
    SECONDARY = "SECONDARY"    # donor database


class EntityKind(str, Enum):
    """Closed set of entity variants"""
    INDIVIDUAL = "Individual"
    AGGREGATE_HOUSEHOLD = "AggregateHousehold"
    BUSINESS = "Business"
    LEGAL_CONSTRUCT = "LegalConstruct"


COMPONENTS = ("name", "contactInfo", "otherInfo", "legacyInfo")

FIRE_NUMBER_PATTERN = re.compile(r"^(\d+)(?:([A-Z])|_(\d+))?$")


def split_location_key(location_key: str) -> Tuple[str, str]:
    """
    Split a location key into (base, suffix)

    Only fire-number style keys ("1234", "1234B", "1234_27") carry a suffix;
    any other key, including hyphenated parcel ids, is its own base.
    """
    key = (location_key or "").strip()
    match = FIRE_NUMBER_PATTERN.match(key)
    if match:
        return match.group(1), match.group(2) or match.group(3) or ""
    return key, ""

# Per-variant comparison weights; households lean on the shared mailing address
COMPARISON_WEIGHTS: Dict[EntityKind, Dict[str, float]] = {
    EntityKind.INDIVIDUAL: {
        "name": 0.5, "contactInfo": 0.3, "otherInfo": 0.15, "legacyInfo": 0.05,
    },
    EntityKind.AGGREGATE_HOUSEHOLD: {
        "name": 0.4, "contactInfo": 0.4, "otherInfo": 0.15, "legacyInfo": 0.05,
    },
    EntityKind.BUSINESS: {
        "name": 0.45, "contactInfo": 0.4, "otherInfo": 0.1, "legacyInfo": 0.05,
    },
    EntityKind.LEGAL_CONSTRUCT: {
        "name": 0.45, "contactInfo": 0.4, "otherInfo": 0.1, "legacyInfo": 0.05,
    },
}


@dataclass(frozen=True)
class AttributedTerm:
    """
    A raw value together with where it came from
    """
    term: Union[str, int, float]
    source: str = ""
    field_index: int = -1
    record_id: str = ""

    def __str__(self) -> str:
        return str(self.term)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "term": self.term,
            "source": self.source,
            "field_index": self.field_index,
            "record_id": self.record_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttributedTerm":
        return cls(**data)


def _term_to_dict(term: Optional[AttributedTerm]) -> Optional[Dict[str, Any]]:
    return term.to_dict() if term is not None else None


def _term_from_dict(data: Optional[Dict[str, Any]]) -> Optional[AttributedTerm]:
    return AttributedTerm.from_dict(data) if data else None


@dataclass
class Address:
    """
    Structured address with the raw string kept for fallback comparison
    """
    raw: Optional[AttributedTerm] = None
    primary_number: str = ""
    street_name: str = ""
    street_type: str = ""
    sec_unit_type: str = ""
    sec_unit_num: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    is_po_box: bool = False
    is_on_island: bool = False

    @property
    def raw_text(self) -> str:
        return str(self.raw.term) if self.raw is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": _term_to_dict(self.raw),
            "primary_number": self.primary_number,
            "street_name": self.street_name,
            "street_type": self.street_type,
            "sec_unit_type": self.sec_unit_type,
            "sec_unit_num": self.sec_unit_num,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "is_po_box": self.is_po_box,
            "is_on_island": self.is_on_island,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Address":
        data = dict(data)
        data["raw"] = _term_from_dict(data.get("raw"))
        return cls(**data)


@dataclass
class ContactInfo:
    """
    Primary (on-location) address, off-location mailing addresses and direct contacts
    """
    primary_address: Optional[Address] = None
    secondary_addresses: List[Address] = field(default_factory=list)
    email: str = ""
    phone: str = ""
    po_box: str = ""

    def all_addresses(self) -> List[Address]:
        addresses = list(self.secondary_addresses)
        if self.primary_address is not None:
            addresses.append(self.primary_address)
        return addresses

    def add_secondary_address(self, address: Address) -> bool:
        """
        Append a mailing address unless an identical raw string is present

        Returns:
            True if the address was added
        """
        text = address.raw_text
        if any(existing.raw_text == text for existing in self.secondary_addresses):
            return False
        self.secondary_addresses.append(address)
        return True

    def best_mailing_address(self) -> Optional[Address]:
        """Prefer an off-island mailing address, then any mailing address, then the primary"""
        for address in self.secondary_addresses:
            if not address.is_on_island:
                return address
        if self.secondary_addresses:
            return self.secondary_addresses[0]
        return self.primary_address

    def is_empty(self) -> bool:
        return not (self.primary_address or self.secondary_addresses
                    or self.email or self.phone or self.po_box)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_address": self.primary_address.to_dict() if self.primary_address else None,
            "secondary_addresses": [a.to_dict() for a in self.secondary_addresses],
            "email": self.email,
            "phone": self.phone,
            "po_box": self.po_box,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContactInfo":
        primary = data.get("primary_address")
        return cls(
            primary_address=Address.from_dict(primary) if primary else None,
            secondary_addresses=[Address.from_dict(a) for a in data.get("secondary_addresses", [])],
            email=data.get("email", ""),
            phone=data.get("phone", ""),
            po_box=data.get("po_box", ""),
        )


@dataclass
class OtherInfo:
    """
    Source-specific attributes plus the subdivision ledger

    The ledger maps each folded-in source record id to a snapshot of that
    record, so the number of underlying records is always recoverable.
    """
    attributes: Dict[str, Any] = field(default_factory=dict)
    subdivision: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def add_subdivision_entry(self, record_id: str, snapshot: Optional[Dict[str, Any]] = None) -> None:
        self.subdivision[record_id] = dict(snapshot or {})

    @property
    def ledger_size(self) -> int:
        return len(self.subdivision)

    def to_dict(self) -> Dict[str, Any]:
        return {"attributes": dict(self.attributes), "subdivision": dict(self.subdivision)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OtherInfo":
        return cls(
            attributes=dict(data.get("attributes", {})),
            subdivision=dict(data.get("subdivision", {})),
        )


@dataclass
class IndividualName:
    """
    Name of one person; `term` holds the assembled full name
    """
    term: AttributedTerm
    title: str = ""
    first_name: str = ""
    other_names: str = ""
    last_name: str = ""
    suffix: str = ""

    @property
    def full_name(self) -> str:
        return str(self.term.term)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "term": self.term.to_dict(),
            "title": self.title,
            "first_name": self.first_name,
            "other_names": self.other_names,
            "last_name": self.last_name,
            "suffix": self.suffix,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndividualName":
        data = dict(data)
        data["term"] = AttributedTerm.from_dict(data["term"])
        return cls(**data)


@dataclass
class EntityName:
    """Single-string name of a business or legal construct"""
    term: AttributedTerm

    @property
    def full_name(self) -> str:
        return str(self.term.term)

    def to_dict(self) -> Dict[str, Any]:
        return {"term": self.term.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls(term=AttributedTerm.from_dict(data["term"]))


@dataclass
class HouseholdName(EntityName):
    """Household name, either synthesized ("SMITH HOUSEHOLD") or the raw owner string"""


@dataclass
class Entity:
    """
    Base entity; concrete variants are registered in ENTITY_TYPES
    """
    kind: ClassVar[EntityKind]
    name_type: ClassVar[Type] = EntityName

    location_key: str = ""
    name: Any = None
    source: SourceTag = SourceTag.PRIMARY
    record_id: str = ""
    contact_info: ContactInfo = field(default_factory=ContactInfo)
    other_info: OtherInfo = field(default_factory=OtherInfo)
    needs_review: bool = False
    review_reason: str = ""

    @property
    def comparison_weights(self) -> Dict[str, float]:
        return COMPARISON_WEIGHTS[self.kind]

    @property
    def display_name(self) -> str:
        return self.name.full_name if self.name is not None else ""

    @property
    def case_id(self) -> str:
        return self.other_info.attributes.get("case_id", "")

    def flag_for_review(self, reason: str) -> None:
        self.needs_review = True
        self.review_reason = reason

    def _fields_to_dict(self) -> Dict[str, Any]:
        return {
            "location_key": self.location_key,
            "name": self.name.to_dict() if self.name is not None else None,
            "source": self.source.value,
            "record_id": self.record_id,
            "contact_info": self.contact_info.to_dict(),
            "other_info": self.other_info.to_dict(),
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
        }

    @classmethod
    def _kwargs_from_fields(cls, fields: Dict[str, Any]) -> Dict[str, Any]:
        name = fields.get("name")
        return {
            "location_key": fields.get("location_key", ""),
            "name": cls.name_type.from_dict(name) if name else None,
            "source": SourceTag(fields.get("source", SourceTag.PRIMARY.value)),
            "record_id": fields.get("record_id", ""),
            "contact_info": ContactInfo.from_dict(fields.get("contact_info", {})),
            "other_info": OtherInfo.from_dict(fields.get("other_info", {})),
            "needs_review": fields.get("needs_review", False),
            "review_reason": fields.get("review_reason", ""),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize as {"kind": ..., "fields": {...}}"""
        return {"kind": self.kind.value, "fields": self._fields_to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        """Rebuild a typed entity from its tagged form"""
        try:
            kind = EntityKind(data["kind"])
            fields = data["fields"]
        except (KeyError, TypeError, ValueError) as e:
            raise EntitySerializationError(f"Malformed entity document: {e}") from e
        entity_cls = ENTITY_TYPES[kind]
        try:
            return entity_cls(**entity_cls._kwargs_from_fields(fields))
        except (KeyError, TypeError, ValueError) as e:
            raise EntitySerializationError(f"Malformed {kind.value} fields: {e}") from e


@dataclass
class Individual(Entity):
    kind: ClassVar[EntityKind] = EntityKind.INDIVIDUAL
    name_type: ClassVar[Type] = IndividualName


@dataclass
class AggregateHousehold(Entity):
    """Household wrapping an ordered list of member individuals"""
    kind: ClassVar[EntityKind] = EntityKind.AGGREGATE_HOUSEHOLD
    name_type: ClassVar[Type] = HouseholdName

    members: List[Individual] = field(default_factory=list)

    def _fields_to_dict(self) -> Dict[str, Any]:
        fields = super()._fields_to_dict()
        fields["members"] = [m.to_dict() for m in self.members]
        return fields

    @classmethod
    def _kwargs_from_fields(cls, fields: Dict[str, Any]) -> Dict[str, Any]:
        kwargs = super()._kwargs_from_fields(fields)
        kwargs["members"] = [Entity.from_dict(m) for m in fields.get("members", [])]
        return kwargs


@dataclass
class Business(Entity):
    kind: ClassVar[EntityKind] = EntityKind.BUSINESS


@dataclass
class LegalConstruct(Entity):
    """Trusts, estates and LLCs"""
    kind: ClassVar[EntityKind] = EntityKind.LEGAL_CONSTRUCT


ENTITY_TYPES: Dict[EntityKind, Type[Entity]] = {
    EntityKind.INDIVIDUAL: Individual,
    EntityKind.AGGREGATE_HOUSEHOLD: AggregateHousehold,
    EntityKind.BUSINESS: Business,
    EntityKind.LEGAL_CONSTRUCT: LegalConstruct,
}


@dataclass
class SourceRecord:
    """
    One raw input row from either source
    """
    record_id: str
    owner_name: str = ""
    source: SourceTag = SourceTag.PRIMARY
    location: str = ""
    mailing_address: str = ""
    fire_number: Optional[str] = None
    pid: Optional[str] = None

    # Donor records usually arrive with the name already split
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def location_key(self) -> str:
        """Fire number, then parcel id, then the raw location string"""
        for candidate in (self.fire_number, self.pid, self.location):
            if candidate is not None and str(candidate).strip():
                return str(candidate).strip()
        return ""

    @property
    def has_structured_name(self) -> bool:
        return bool(self.first_name or self.last_name)

    def snapshot(self) -> Dict[str, Any]:
        """Compact copy kept in the subdivision ledger"""
        return {
            "record_id": self.record_id,
            "owner_name": self.owner_name,
            "location_key": self.location_key,
            "mailing_address": self.mailing_address,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "owner_name": self.owner_name,
            "source": self.source.value,
            "location": self.location,
            "mailing_address": self.mailing_address,
            "fire_number": self.fire_number,
            "pid": self.pid,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRecord":
        data = dict(data)
        if "source" in data:
            data["source"] = SourceTag(data["source"])
        for key in ("fire_number", "pid"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        data["record_id"] = str(data["record_id"])
        return cls(**data)
