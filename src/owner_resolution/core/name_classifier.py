"""
Owner name classification

Turns a free-text owner name into a typed entity using an ordered decision
list. Each rule pairs a predicate over precomputed NameFeatures with a
builder; rules are tried in ascending priority and the first match wins.
"""
import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from owner_resolution.core.address_parser import AddressParser, is_po_box_address
from owner_resolution.core.entities import (
    AggregateHousehold,
    AttributedTerm,
    Business,
    ContactInfo,
    Entity,
    EntityName,
    HouseholdName,
    Individual,
    IndividualName,
    LegalConstruct,
    SourceRecord,
)
from owner_resolution.core.errors import ClassificationError

logger = logging.getLogger(__name__)

BUSINESS_TERMS = frozenset([
    "LLC", "INC", "CORP", "TRUST", "TRUSTEE", "ESTATE", "FOUNDATION",
    "ASSOCIATION", "SOCIETY", "COMPANY", "ENTERPRISES", "PROPERTIES",
    "INVESTMENTS", "HOLDINGS", "MANAGEMENT", "SERVICES", "GROUP",
    "PARTNERS", "PARTNERSHIP", "CO", "LTD", "LIMITED", "INCORPORATED",
    "CONSERVANCY",
])

# Complete owner names known to be non-human
MASTER_BUSINESS_NAMES = frozenset([
    "TOWN OF NEW SHOREHAM", "584 BEACH AVE", "BI PARTNERSHIP", "STATE OF RI AIRPORT",
    "ST ANDREWS CHURCH", "SWAIN ASSOCIATES", "CORMORANT COVE ASSOCIATION",
    "WINDHOVER ASSOCIATES ET AL", "LTM 2019 FAMILYTRUST", "PRESS/G FLP", "BI SALES CORP",
    "TOWN OF NEW SHOREHAM ETAL", "US GOVERNMENT", "BI UTILITY DISTRICT",
    "SERF HEAVY INDUSTRIES", "STATE OF RI", "SOUTHEAST LIGHTHOUSE FDN", "BI MARITIME INSTITUTE",
    "STATE OF RI HIGHWAY DEPT", "NARRAGANSETT ELECTRIC CO.", "DEEPWATER WIND",
    "FEDERAL PROPERTIES OF RI", "BI ECONOMIC DEVELOPMENT FDN", "RI BOY SCOUTS OF AMERICA",
    "SHEEPS MEADOW HOMEOWNERS ASSOC", "BI CLUB", "WBI PARTNERSHIP", "STATE OF RI ACTING BY/THRU",
    "BLOCK ISLAND HOUSING BOARD", "BLOCK ISLAND UTILITY DISTRICT", "STATE OF RHODE ISLAND",
    "THE NATURE CONSERVANCY ETAL", "US FISH AND WILDLIFE",
])

LEGAL_CONSTRUCT_KEYWORDS = ("TRUST", "ESTATE", "LLC", "INC", "CORP")

UNRESOLVED_HOUSEHOLD = "unresolved complex household name"


def preprocess_name(raw_name: str) -> str:
    """Uppercase, trim and normalize comma spacing"""
    name = (raw_name or "").strip().upper()
    name = re.sub(r"\s*,\s*", ", ", name)
    name = re.sub(r",\s*$", ",", name)
    return name


def clean_word(word: str) -> str:
    """Strip everything but letters, digits and underscore"""
    return re.sub(r"[^\w]", "", word)


def clean_last_name(word: str) -> str:
    return re.sub(r"[,;]$", "", word).strip()


def is_business_term_word(word: str) -> bool:
    """
    Check if a word is, or embeds, a business term

    A term embedded in a longer word only counts when the word carries
    internal punctuation other than an apostrophe or hyphen ("SMITH/TRUST").
    """
    if not word:
        return False
    upper = word.upper()
    if not any(term in upper for term in BUSINESS_TERMS):
        return False

    for char in set(re.findall(r"[^\w\s'-]", word)):
        if word.index(char) > 0 and word.rindex(char) < len(word) - 1:
            return True

    return clean_word(upper) in BUSINESS_TERMS


def has_integer_business_pattern(words: Sequence[str]) -> bool:
    """An integer followed by a business term, e.g. "2019 TRUST" """
    for current, following in zip(words, words[1:]):
        if re.fullmatch(r"\d+", clean_word(current)) and clean_word(following) in BUSINESS_TERMS:
            return True
    return False


def is_legal_construct_name(name: str) -> bool:
    upper = name.upper()
    return any(keyword in upper for keyword in LEGAL_CONSTRUCT_KEYWORDS) or "/" in name


@dataclass(frozen=True)
class NameFeatures:
    """
    Derived predicates over a tokenized owner name
    """
    name: str
    words: Tuple[str, ...]
    is_master_business_name: bool
    has_business_terms: bool
    business_word_flags: Tuple[bool, ...]
    has_comma: bool
    has_ampersand: bool
    has_slash: bool
    comma_count: int

    @classmethod
    def from_name(cls, raw_name: str) -> "NameFeatures":
        name = preprocess_name(raw_name)
        words = tuple(name.split())
        flags = tuple(is_business_term_word(w) for w in words)
        joined = " ".join(words)
        return cls(
            name=name,
            words=words,
            is_master_business_name=name in MASTER_BUSINESS_NAMES,
            has_business_terms=any(flags) or has_integer_business_pattern(words),
            business_word_flags=flags,
            has_comma="," in joined,
            has_ampersand="&" in joined,
            has_slash="/" in joined,
            comma_count=joined.count(","),
        )

    @property
    def word_count(self) -> int:
        return len(self.words)

    @property
    def has_major_punctuation(self) -> bool:
        return self.has_comma or self.has_ampersand or self.has_slash

    @property
    def commas_only(self) -> bool:
        return self.has_comma and not self.has_ampersand and not self.has_slash

    @property
    def ampersand_only(self) -> bool:
        return self.has_ampersand and not self.has_comma and not self.has_slash

    @property
    def slash_only(self) -> bool:
        return self.has_slash and not self.has_comma and not self.has_ampersand

    @property
    def ampersand_index(self) -> int:
        return self.words.index("&") if "&" in self.words else -1

    # Position predicates

    def first_word_ends_with_comma(self) -> bool:
        return bool(self.words) and self.words[0].endswith(",")

    def last_word_ends_with_comma(self) -> bool:
        return bool(self.words) and self.words[-1].endswith(",")

    def middle_word_is_comma(self) -> bool:
        return self.word_count == 3 and self.words[1] == ","

    def last_word_is_single_letter(self) -> bool:
        return bool(self.words) and len(clean_word(self.words[-1])) == 1

    def second_word_is_single_letter(self) -> bool:
        return self.word_count > 1 and len(clean_word(self.words[1])) == 1

    def first_and_third_words_match(self) -> bool:
        return self.word_count >= 4 and clean_word(self.words[0]) == clean_word(self.words[2])

    def comma_word_follows_another_word(self) -> bool:
        return self.word_count == 3 and any("," in w for w in self.words[1:])

    def slash_parts_are_business_terms(self) -> bool:
        for word in self.words:
            if "/" in word:
                parts = word.split("/")
                return (
                    len(parts) == 2
                    and parts[0].strip() in BUSINESS_TERMS
                    and parts[1].strip() in BUSINESS_TERMS
                )
        return False

    def only_comma_in_first_word(self) -> bool:
        return (
            bool(self.words)
            and "," in self.words[0]
            and not any("," in w for w in self.words[1:])
        )

    def commas_in_first_and_after_ampersand(self) -> bool:
        amp = self.ampersand_index
        if amp <= 0 or "," not in self.words[0]:
            return False
        return amp + 1 < self.word_count and "," in self.words[amp + 1]

    def repeated_comma_word(self) -> Optional[Tuple[int, int]]:
        """Positions of the first comma-bearing word that appears again later"""
        for i, word in enumerate(self.words):
            if "," in word:
                for j in range(i + 1, self.word_count):
                    if self.words[j] == word:
                        return i, j
        return None

    def ampersand_has_one_word_after(self) -> bool:
        amp = self.ampersand_index
        return amp != -1 and amp == self.word_count - 2

    def last_business_word_index(self) -> int:
        for i in range(self.word_count - 1, -1, -1):
            if self.business_word_flags[i]:
                return i
        return -1


NamePredicate = Callable[[NameFeatures], bool]


@dataclass
class BuildContext:
    """
    Everything a builder needs besides the tokens
    """
    record: SourceRecord
    field_index: int
    contact_info: ContactInfo = field(default_factory=ContactInfo)

    def term(self, value: str) -> AttributedTerm:
        return AttributedTerm(value, self.record.source.value, self.field_index, self.record.record_id)

    def _stamp(self, entity: Entity) -> Entity:
        entity.location_key = self.record.location_key
        entity.source = self.record.source
        entity.record_id = self.record.record_id
        entity.contact_info = copy.deepcopy(self.contact_info)
        return entity

    def individual(self, first: str = "", last: str = "", other: str = "", full: Optional[str] = None) -> Individual:
        if full is None:
            full = " ".join(part for part in (first, other, last) if part)
        name = IndividualName(
            term=self.term(full),
            first_name=first,
            other_names=other,
            last_name=last,
        )
        return self._stamp(Individual(name=name))

    def person(self, name_words: Sequence[str], last: str) -> Individual:
        """Individual from [first, other...] words plus a known last name"""
        first = name_words[0].strip() if name_words else ""
        other = " ".join(w.strip() for w in name_words[1:])
        return self.individual(first=first, last=last, other=other)

    def household(self, name: str, members: List[Individual]) -> AggregateHousehold:
        household = AggregateHousehold(name=HouseholdName(term=self.term(name)), members=members)
        return self._stamp(household)

    def flagged_household(self, name: str, reason: str = UNRESOLVED_HOUSEHOLD) -> AggregateHousehold:
        household = self.household(name, [])
        household.flag_for_review(reason)
        return household

    def business(self, name: str) -> Business:
        return self._stamp(Business(name=EntityName(term=self.term(name))))

    def business_or_legal(self, name: str) -> Entity:
        entity_cls = LegalConstruct if is_legal_construct_name(name) else Business
        return self._stamp(entity_cls(name=EntityName(term=self.term(name))))


NameBuilder = Callable[[NameFeatures, BuildContext], Entity]


@dataclass(frozen=True)
class ClassificationRule:
    priority: int
    case_id: str
    predicate: NamePredicate
    builder: NameBuilder


# Builders

def build_business_by_keyword(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.business_or_legal(" ".join(f.words))


def build_business_without_commas(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.business_or_legal(" ".join(f.words).replace(",", ""))


def build_last_first(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(first=clean_last_name(f.words[1]), last=clean_last_name(f.words[0]))


def build_first_last(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(first=f.words[0], last=f.words[1])


def build_last_first_other(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(first=f.words[1], last=clean_last_name(f.words[0]), other=f.words[2])


def build_last_comma_first(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(first=f.words[2], last=clean_last_name(f.words[0]))


def build_first_other_last(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(first=f.words[0], other=f.words[1], last=f.words[2])


def build_full_name_only(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.individual(full=" ".join(f.words))


def build_trailing_comma_individual(f: NameFeatures, ctx: BuildContext) -> Entity:
    individual = ctx.individual(full=" ".join(f.words).rstrip(","))
    individual.flag_for_review("two-word name ending in a comma")
    return individual


def build_shared_last_pair(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST, FIRST1 & FIRST2 / LAST FIRST1 & FIRST2"""
    last = clean_last_name(f.words[0])
    amp = f.ampersand_index
    second_first = f.words[amp + 1] if amp != -1 else f.words[3]
    members = [ctx.person([f.words[1]], last), ctx.person([second_first], last)]
    return ctx.household(f"{last} HOUSEHOLD", members)


def build_repeated_last_pair(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST, FIRST1 LAST, FIRST2"""
    last1 = clean_word(f.words[0])
    last2 = clean_word(f.words[2])
    if last1 != last2:
        raise ValueError(f"Last names do not match: {last1} vs {last2}")
    members = [ctx.person([f.words[1]], last1), ctx.person([f.words[3]], last1)]
    return ctx.household(f"{last1} HOUSEHOLD", members)


def build_two_surname_pair(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST1, FIRST1 LAST2, FIRST2"""
    if not (f.words[0].endswith(",") and f.words[2].endswith(",")):
        return ctx.flagged_household(" ".join(f.words))
    last1 = clean_last_name(f.words[0])
    last2 = clean_last_name(f.words[2])
    members = [ctx.person([f.words[1]], last1), ctx.person([f.words[3]], last2)]
    return ctx.household(f"{last1}-{last2} HOUSEHOLD", members)


def build_flagged_household(f: NameFeatures, ctx: BuildContext) -> Entity:
    return ctx.flagged_household(" ".join(f.words))


def build_multiple_comma_business(f: NameFeatures, ctx: BuildContext) -> Entity:
    if f.has_ampersand:
        return ctx.flagged_household(" ".join(f.words))
    return ctx.business(" ".join(f.words))


def build_shared_last_long(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST, FIRST1 OTHER1 & FIRST2 OTHER2"""
    amp = f.ampersand_index
    if amp <= 1:
        return ctx.flagged_household(" ".join(f.words))
    last = clean_last_name(f.words[0])
    members = [ctx.person(f.words[1:amp], last)]
    if f.words[amp + 1:]:
        members.append(ctx.person(f.words[amp + 1:], last))
    return ctx.household(f"{last} HOUSEHOLD", members)


def build_two_surname_long(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST1, FIRST1 OTHER1 & LAST2, FIRST2 OTHER2"""
    amp = f.ampersand_index
    members = []
    first_words = f.words[1:amp]
    if first_words:
        members.append(ctx.person(first_words, clean_last_name(f.words[0])))
    second_words = f.words[amp + 2:]
    if second_words:
        members.append(ctx.person(second_words, clean_last_name(f.words[amp + 1])))
    if not members:
        return ctx.flagged_household(" ".join(f.words))
    return ctx.household(" ".join(f.words), members)


def build_repeated_last_long(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST, FIRST1 OTHER1 LAST, FIRST2 OTHER2"""
    positions = f.repeated_comma_word()
    if positions is None:
        return ctx.flagged_household(" ".join(f.words))
    i, j = positions
    last = clean_last_name(f.words[i])
    members = []
    if f.words[i + 1:j]:
        members.append(ctx.person(f.words[i + 1:j], last))
    if f.words[j + 1:]:
        members.append(ctx.person(f.words[j + 1:], last))
    if not members:
        return ctx.flagged_household(" ".join(f.words))
    return ctx.household(f"{last} HOUSEHOLD", members)


def build_shared_last_one_after(f: NameFeatures, ctx: BuildContext) -> Entity:
    """LAST FIRST1 OTHER1 & FIRST2"""
    amp = f.ampersand_index
    if amp <= 1:
        return ctx.flagged_household(" ".join(f.words))
    last = clean_last_name(f.words[0])
    members = [ctx.person(f.words[1:amp], last), ctx.person([f.words[amp + 1]], last)]
    return ctx.household(f"{last} HOUSEHOLD", members)


# Predicates

def _five_word_household_fits(f: NameFeatures) -> bool:
    return (
        (f.has_ampersand and f.only_comma_in_first_word())
        or (f.has_ampersand and f.commas_in_first_and_after_ampersand())
        or (f.commas_only and f.comma_count > 1)
        or (f.ampersand_only and f.ampersand_has_one_word_after())
    )


def _case20_pattern(f: NameFeatures) -> bool:
    return "," in f.words[0] and f.business_word_flags[3]


def _case20n_pattern(f: NameFeatures) -> bool:
    if "," in f.words[0]:
        return False
    last_business = f.last_business_word_index()
    return last_business > 0 and "," in f.words[last_business - 1]


def _words(n: int, business: bool) -> NamePredicate:
    def check(f: NameFeatures) -> bool:
        return f.word_count == n and f.has_business_terms == business
    return check


_2 = _words(2, False)
_2B = _words(2, True)
_3 = _words(3, False)
_3B = _words(3, True)
_4 = _words(4, False)
_4B = _words(4, True)


def _5(f: NameFeatures) -> bool:
    return f.word_count >= 5 and not f.has_business_terms


def _5B(f: NameFeatures) -> bool:
    return f.word_count >= 5 and f.has_business_terms


CLASSIFICATION_RULES: List[ClassificationRule] = [
    ClassificationRule(0, "case0", lambda f: f.is_master_business_name, build_business_by_keyword),

    # two words
    ClassificationRule(10, "case1", lambda f: _2(f) and f.has_comma and f.first_word_ends_with_comma(), build_last_first),
    ClassificationRule(20, "case2", lambda f: _2(f) and f.has_comma and f.last_word_ends_with_comma(), build_trailing_comma_individual),
    ClassificationRule(30, "case3", lambda f: _2(f) and not f.has_major_punctuation, build_first_last),
    ClassificationRule(40, "case4", lambda f: _2B(f) and f.has_comma, build_business_by_keyword),
    ClassificationRule(50, "case4N", lambda f: _2B(f) and not f.has_major_punctuation, build_last_first),

    # three words
    ClassificationRule(60, "case5", lambda f: _3(f) and f.commas_only and f.first_word_ends_with_comma(), build_last_first_other),
    ClassificationRule(70, "case6", lambda f: _3(f) and f.commas_only and f.middle_word_is_comma(), build_last_comma_first),
    ClassificationRule(80, "case7", lambda f: _3(f) and f.commas_only and f.comma_word_follows_another_word(), build_business_by_keyword),
    ClassificationRule(90, "case8", lambda f: _3(f) and not f.has_major_punctuation and f.last_word_is_single_letter(), build_last_first_other),
    ClassificationRule(100, "case9", lambda f: _3(f) and not f.has_major_punctuation and f.second_word_is_single_letter() and not f.last_word_is_single_letter(), build_first_other_last),
    ClassificationRule(110, "case10", lambda f: _3(f) and not f.has_major_punctuation and not f.second_word_is_single_letter() and not f.last_word_is_single_letter(), build_first_other_last),
    ClassificationRule(120, "case11", lambda f: _3(f) and f.ampersand_only and "&" in f.words, build_business_by_keyword),
    ClassificationRule(130, "case12", lambda f: _3(f) and f.slash_only and f.slash_parts_are_business_terms(), build_business_by_keyword),
    ClassificationRule(140, "case13", lambda f: _3B(f) and not f.has_major_punctuation, build_business_by_keyword),
    ClassificationRule(150, "case14", lambda f: _3B(f) and f.commas_only, build_business_without_commas),

    # four words
    ClassificationRule(160, "case15a", lambda f: _4(f) and f.has_ampersand and f.has_comma and f.first_word_ends_with_comma(), build_shared_last_pair),
    ClassificationRule(170, "case15b", lambda f: _4(f) and f.commas_only and f.first_and_third_words_match(), build_repeated_last_pair),
    ClassificationRule(180, "case16", lambda f: _4(f) and f.commas_only and not f.first_and_third_words_match(), build_two_surname_pair),
    ClassificationRule(190, "case17", lambda f: _4(f) and f.ampersand_only, build_shared_last_pair),
    ClassificationRule(200, "case18", lambda f: _4(f) and not f.has_major_punctuation, build_full_name_only),
    ClassificationRule(210, "case19", lambda f: _4B(f) and not f.has_major_punctuation, build_business_by_keyword),
    ClassificationRule(220, "case20", lambda f: _4B(f) and f.commas_only and _case20_pattern(f), build_business_without_commas),
    ClassificationRule(230, "case21", lambda f: _4B(f) and f.commas_only and f.words[1] == ",", build_business_by_keyword),
    ClassificationRule(240, "case21N", lambda f: _4B(f) and f.commas_only and f.comma_count > 1, build_multiple_comma_business),
    ClassificationRule(250, "case20N", lambda f: _4B(f) and f.commas_only and _case20n_pattern(f), build_last_first),
    ClassificationRule(260, "case22", lambda f: _4B(f) and f.ampersand_only and f.words[1] == "&", build_business_by_keyword),
    ClassificationRule(270, "case23", lambda f: _4B(f) and f.has_ampersand and f.has_comma, build_business_by_keyword),
    ClassificationRule(280, "case24", lambda f: _4B(f) and f.has_slash, build_business_by_keyword),

    # five or more words
    ClassificationRule(290, "case25", lambda f: _5(f) and f.has_ampersand and f.only_comma_in_first_word(), build_shared_last_long),
    ClassificationRule(300, "case26", lambda f: _5(f) and f.has_ampersand and f.commas_in_first_and_after_ampersand(), build_two_surname_long),
    ClassificationRule(310, "case27", lambda f: _5(f) and f.commas_only and f.comma_count > 1 and f.repeated_comma_word() is not None, build_repeated_last_long),
    ClassificationRule(320, "case28", lambda f: _5(f) and f.commas_only and f.comma_count > 1 and f.repeated_comma_word() is None, build_flagged_household),
    ClassificationRule(330, "case29", lambda f: _5(f) and f.ampersand_only and f.ampersand_has_one_word_after(), build_shared_last_one_after),
    ClassificationRule(340, "case30", lambda f: _5(f) and not _five_word_household_fits(f), build_flagged_household),
    ClassificationRule(350, "case31", _5B, build_business_by_keyword),

    # anything left over
    ClassificationRule(900, "case32", lambda f: f.word_count > 0 and not f.has_business_terms and f.has_ampersand, build_flagged_household),
    ClassificationRule(910, "case33", lambda f: f.word_count > 0 and not f.has_business_terms and not f.has_ampersand, build_full_name_only),
    ClassificationRule(920, "case34", lambda f: f.has_business_terms, build_business_by_keyword),
]

CATCHALL_CASE = "catchall"
STRUCTURED_CASE = "structured"


class NameClassifier:
    """
    Classify raw owner names into typed entities
    """

    def __init__(
        self,
        rules: Optional[List[ClassificationRule]] = None,
        address_parser: Optional[AddressParser] = None
    ):
        """
        Initialize classifier

        Args:
            rules: Classification rules; sorted by priority on construction
            address_parser: Parser used for record addresses
        """
        self.rules = sorted(rules if rules is not None else CLASSIFICATION_RULES, key=lambda r: r.priority)
        self.address_parser = address_parser or AddressParser()

    def detect_rule(self, features: NameFeatures) -> Optional[ClassificationRule]:
        """First rule whose predicate holds, or None"""
        for rule in self.rules:
            if rule.predicate(features):
                return rule
        return None

    def detect_case(self, raw_name: str) -> str:
        rule = self.detect_rule(NameFeatures.from_name(raw_name))
        return rule.case_id if rule else CATCHALL_CASE

    def classify(self, raw_name: str, record: SourceRecord, field_index: int = -1) -> Entity:
        """
        Classify a raw owner name

        Args:
            raw_name: Owner name as it appears in the source
            record: Source record supplying location, addresses and provenance
            field_index: Position of the record in its batch

        Returns:
            Typed entity

        Raises:
            ClassificationError: if the matched rule's builder fails
        """
        features = NameFeatures.from_name(raw_name)
        ctx = BuildContext(
            record=record,
            field_index=field_index,
            contact_info=self.build_contact_info(record, field_index),
        )

        rule = self.detect_rule(features)
        case_id = rule.case_id if rule else CATCHALL_CASE
        builder = rule.builder if rule else build_business_by_keyword

        try:
            entity = builder(features, ctx)
        except Exception as e:
            raise ClassificationError(
                f"Builder for {case_id} failed on {features.name!r}: {e}",
                record_id=record.record_id,
                case_id=case_id,
                raw_name=raw_name,
            ) from e

        self._finish(entity, record, case_id)
        logger.debug("Record %s classified as %s (%s)", record.record_id, entity.kind.value, case_id)
        return entity

    def classify_record(self, record: SourceRecord, field_index: int = -1) -> Entity:
        """
        Classify a record, using its split name fields when it has them
        """
        if not record.has_structured_name:
            return self.classify(record.owner_name, record, field_index)

        ctx = BuildContext(
            record=record,
            field_index=field_index,
            contact_info=self.build_contact_info(record, field_index),
        )
        entity = ctx.individual(
            first=record.first_name.strip().upper(),
            last=record.last_name.strip().upper(),
        )
        self._finish(entity, record, STRUCTURED_CASE)
        return entity

    def build_contact_info(self, record: SourceRecord, field_index: int = -1) -> ContactInfo:
        """
        Parse the record's location and mailing address into ContactInfo
        """
        source = record.source.value
        contact_info = ContactInfo(
            primary_address=self.address_parser.parse(
                record.location, source, field_index, record.record_id
            ),
            email=record.email.strip().lower(),
            phone=re.sub(r"\D", "", record.phone or ""),
        )

        for part in self.address_parser.split_combined_address(record.mailing_address):
            address = self.address_parser.parse(part, source, field_index, record.record_id)
            if address is None:
                continue
            contact_info.add_secondary_address(address)
            if is_po_box_address(address) and not contact_info.po_box:
                contact_info.po_box = f"PO BOX {address.sec_unit_num}".strip()

        return contact_info

    def _finish(self, entity: Entity, record: SourceRecord, case_id: str) -> None:
        entity.other_info.attributes.update(record.extra)
        entity.other_info.attributes["case_id"] = case_id
        entity.other_info.add_subdivision_entry(record.record_id, record.snapshot())


def classification_rules_by_case() -> Dict[str, ClassificationRule]:
    return {rule.case_id: rule for rule in CLASSIFICATION_RULES}
