"""
Address normalization and parsing utilities
"""
import re
from typing import List, Optional, Tuple

from owner_resolution.core.entities import Address, AttributedTerm

ON_ISLAND_ZIP = "02807"
ON_ISLAND_CITIES = ("BLOCK ISLAND", "NEW SHOREHAM")

# Lines of a multi-line mailing address
LINE_SEPARATOR = re.compile(r"\s*(?:\n|\|)\s*")

PO_BOX_LINE_PATTERNS = [
    re.compile(r"^P\.?\s*O\.?\s*BOX\s+[A-Z0-9]+"),
    re.compile(r"^POST\s*OFFICE\s*BOX\s+[A-Z0-9]+"),
    re.compile(r"^PO\s*BO\s*X\s*[A-Z0-9]+"),
    re.compile(r"^BOX\s+[A-Z0-9]+"),
]
STREET_LINE_PATTERN = re.compile(r"^\d+\s+[A-Z]")

PO_BOX_PATTERN = re.compile(
    r"^(?:P\s*O\s*BOX|POST\s*OFFICE\s*BOX|PO\s*BO\s*X|POB|BOX)\s*#?\s*([A-Z0-9-]*)"
)
PO_BOX_UNIT_TYPES = {"PO BOX", "P O BOX", "POB", "POBOX", "POST OFFICE BOX", "BOX"}

STATE_ZIP_PATTERN = re.compile(r"\b([A-Z]{2})\s+(\d{5})(?:-\d{4})?$")
ZIP_ONLY_PATTERN = re.compile(r"\b(\d{5})(?:-\d{4})?$")
STREET_NUMBER_PATTERN = re.compile(r"^(\d+[A-Z]?)\s+(.+)$")
UNIT_PATTERN = re.compile(r"\s+(?:(APT|UNIT|STE|#)\s*([A-Z0-9-]+))$")


class AddressParser:
    """
    Normalize raw address strings and parse them into structured Address objects
    """

    # US State abbreviations
    STATE_ABBREVIATIONS = {
        "ALABAMA": "AL", "ALASKA": "AK", "ARIZONA": "AZ", "ARKANSAS": "AR",
        "CALIFORNIA": "CA", "COLORADO": "CO", "CONNECTICUT": "CT", "DELAWARE": "DE",
        "FLORIDA": "FL", "GEORGIA": "GA", "HAWAII": "HI", "IDAHO": "ID",
        "ILLINOIS": "IL", "INDIANA": "IN", "IOWA": "IA", "KANSAS": "KS",
        "KENTUCKY": "KY", "LOUISIANA": "LA", "MAINE": "ME", "MARYLAND": "MD",
        "MASSACHUSETTS": "MA", "MICHIGAN": "MI", "MINNESOTA": "MN", "MISSISSIPPI": "MS",
        "MISSOURI": "MO", "MONTANA": "MT", "NEBRASKA": "NE", "NEVADA": "NV",
        "NEW HAMPSHIRE": "NH", "NEW JERSEY": "NJ", "NEW MEXICO": "NM", "NEW YORK": "NY",
        "NORTH CAROLINA": "NC", "NORTH DAKOTA": "ND", "OHIO": "OH", "OKLAHOMA": "OK",
        "OREGON": "OR", "PENNSYLVANIA": "PA", "RHODE ISLAND": "RI", "SOUTH CAROLINA": "SC",
        "SOUTH DAKOTA": "SD", "TENNESSEE": "TN", "TEXAS": "TX", "UTAH": "UT",
        "VERMONT": "VT", "VIRGINIA": "VA", "WASHINGTON": "WA", "WEST VIRGINIA": "WV",
        "WISCONSIN": "WI", "WYOMING": "WY"
    }

    # Street suffix abbreviations
    STREET_SUFFIXES = {
        "STREET": "ST", "AVENUE": "AVE", "ROAD": "RD", "DRIVE": "DR",
        "BOULEVARD": "BLVD", "LANE": "LN", "COURT": "CT", "CIRCLE": "CIR",
        "PLACE": "PL", "TERRACE": "TER", "PARKWAY": "PKY", "HIGHWAY": "HWY",
        "TRAIL": "TRL", "WAY": "WAY", "PATH": "PATH", "POINT": "PT",
    }

    def normalize_address(self, address: str) -> str:
        """
        Normalize a single address line for matching
        """
        if not address:
            return ""

        normalized = address.strip().upper()

        # Collapse dotted PO forms before punctuation is stripped
        normalized = re.sub(r"\bP\s*\.\s*O\s*\.?\s*BOX\b", "PO BOX", normalized)
        normalized = re.sub(r"\bP\s+O\s+BOX\b", "PO BOX", normalized)

        # Standardize state names (before "RHODE ISLAND" can be mistaken for a street word)
        for full_state, abbrev in self.STATE_ABBREVIATIONS.items():
            normalized = re.sub(rf"\b{full_state}\b(?=\s+\d{{5}}|\s*$)", abbrev, normalized)

        for full_suffix, abbrev in self.STREET_SUFFIXES.items():
            normalized = re.sub(rf"\b{full_suffix}\b", abbrev, normalized)

        # Commas are kept as component separators; other punctuation goes
        normalized = re.sub(r"[.]", " ", normalized)
        normalized = re.sub(r"\s*,\s*", ", ", normalized)

        normalized = " ".join(normalized.split())

        normalized = re.sub(r"\bAPARTMENT\b", "APT", normalized)
        normalized = re.sub(r"\bSUITE\b", "STE", normalized)

        return normalized.strip(" ,")

    def split_lines(self, raw: str) -> List[str]:
        return [line for line in LINE_SEPARATOR.split(raw.strip().upper()) if line]

    def split_combined_address(self, raw: str) -> List[str]:
        """
        Split a mailing address that carries both a PO Box line and a street line

        Returns:
            [po_box_version, street_version] when both are present, else [raw]
        """
        if not raw:
            return []

        lines = self.split_lines(raw)
        po_box_line = None
        street_line = None
        for line in lines:
            if is_po_box_line(line):
                po_box_line = line
            elif STREET_LINE_PATTERN.match(line):
                street_line = line

        if po_box_line is None or street_line is None:
            return [raw]

        po_version = ", ".join(line for line in lines if line != street_line)
        street_version = ", ".join(line for line in lines if line != po_box_line)
        return [po_version, street_version]

    def parse(
        self,
        raw: str,
        source: str = "",
        field_index: int = -1,
        record_id: str = ""
    ) -> Optional[Address]:
        """
        Parse a raw address into structured components

        Args:
            raw: Raw address text, lines separated by newlines, "|" or commas
            source: Source tag recorded on the raw term
            field_index: Originating field index
            record_id: Originating record id

        Returns:
            Address, or None for blank input
        """
        if not raw or not raw.strip():
            return None

        text = self.normalize_address(", ".join(self.split_lines(raw)))
        address = Address(raw=AttributedTerm(text, source, field_index, record_id))

        remainder, state, zip_code = self._take_state_zip(text)
        address.state = state
        address.zip_code = zip_code

        segments = [s.strip() for s in remainder.split(",") if s.strip()]
        street_part = segments[0] if segments else ""
        if len(segments) > 1:
            address.city = " ".join(segments[1:])
        elif street_part:
            street_part, address.city = self._take_known_city(street_part)

        po_match = PO_BOX_PATTERN.match(street_part)
        if po_match:
            address.is_po_box = True
            address.sec_unit_type = "PO BOX"
            address.sec_unit_num = po_match.group(1) or ""
        else:
            self._parse_street(street_part, address)

        address.is_on_island = (
            address.zip_code == ON_ISLAND_ZIP or address.city in ON_ISLAND_CITIES
        )
        return address

    def _take_state_zip(self, text: str) -> Tuple[str, str, str]:
        match = STATE_ZIP_PATTERN.search(text)
        if match:
            return text[:match.start()].strip(" ,"), match.group(1), match.group(2)
        match = ZIP_ONLY_PATTERN.search(text)
        if match:
            return text[:match.start()].strip(" ,"), "", match.group(1)
        return text, "", ""

    def _take_known_city(self, text: str) -> Tuple[str, str]:
        for city in ON_ISLAND_CITIES:
            if text.endswith(" " + city):
                return text[: -len(city)].strip(), city
        return text, ""

    def _parse_street(self, street_part: str, address: Address) -> None:
        unit_match = UNIT_PATTERN.search(street_part)
        if unit_match:
            address.sec_unit_type = "APT" if unit_match.group(1) == "#" else unit_match.group(1)
            address.sec_unit_num = unit_match.group(2)
            street_part = street_part[:unit_match.start()]

        number_match = STREET_NUMBER_PATTERN.match(street_part)
        if number_match:
            address.primary_number = number_match.group(1)
            street_part = number_match.group(2)

        words = street_part.split()
        if len(words) > 1 and words[-1] in self.STREET_SUFFIXES.values():
            address.street_type = words[-1]
            words = words[:-1]
        address.street_name = " ".join(words)


def is_po_box_line(line: str) -> bool:
    """Check if a single address line starts like a PO Box"""
    cleaned = line.strip().upper()
    return any(pattern.match(cleaned) for pattern in PO_BOX_LINE_PATTERNS)


def is_po_box_address(address: Optional[Address]) -> bool:
    """
    Check if a parsed address is a PO Box, by flag, unit type or street text
    """
    if address is None:
        return False
    if address.is_po_box:
        return True
    unit_type = re.sub(r"[.\s]+", " ", address.sec_unit_type.upper()).strip()
    if unit_type in PO_BOX_UNIT_TYPES or unit_type.replace(" ", "") == "POBOX":
        return True
    return bool(re.match(r"^(?:P\s*O\s*|POST\s*OFFICE\s*)?BOX\b", address.street_name.upper()))
