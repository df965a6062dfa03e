"""Fuzzy entity-code resolution backed by the trigram search functions.

Each entity type maps to one ``search_*_case_insensitive`` stored function and
the name/code columns it returns. Lookups never raise: database failures come
back as a ``LookupResult`` with ``status="error"`` so the conversation can go on.
"""
from __future__ import annotations

import asyncio
import calendar
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from spending_analyst.core.logger import get_logger
from spending_analyst.db.rpc import DatabaseRPC, RPCError

from .config import chatbot_config
from .schemas import DateRange, EntityCandidate, LookupResult, ResolvedEntitySet

logger = get_logger(__name__)


class EntityType(str, Enum):
    AGENCY = "agency"
    APPLICATION_FUND = "application_fund"
    APPROPRIATION = "appropriation"
    CATEGORY = "category"
    FUND = "fund"
    PAYEE = "payee"
    COMPTROLLER = "comptroller"


@dataclass(frozen=True)
class EntitySpec:
    """How one entity type is searched and described."""

    function: str
    name_column: str
    code_column: str
    noun: str
    plural: str
    code_phrase: str
    code_label: str
    result_field: str


ENTITY_SPECS: dict[EntityType, EntitySpec] = {
    EntityType.AGENCY: EntitySpec(
        "search_agencies_case_insensitive", "agency_name", "agency_cd",
        "agency", "agencies", "agency code", "Code", "agency_ids",
    ),
    EntityType.APPLICATION_FUND: EntitySpec(
        "search_application_funds_case_insensitive", "appd_fund_num_name", "appd_fund_num",
        "application fund", "application funds", "application fund code", "Code",
        "application_fund_ids",
    ),
    EntityType.APPROPRIATION: EntitySpec(
        "search_appropriations_case_insensitive", "appropriation_name", "appropriation_number",
        "appropriation", "appropriations", "appropriation number", "Number",
        "appropriation_ids",
    ),
    EntityType.CATEGORY: EntitySpec(
        "search_categories_case_insensitive", "category", "catcode",
        "category", "categories", "category code", "Code", "category_ids",
    ),
    EntityType.FUND: EntitySpec(
        "search_funds_case_insensitive", "fund_description", "fund_num",
        "fund", "funds", "fund number", "Number", "fund_ids",
    ),
    EntityType.PAYEE: EntitySpec(
        "search_payees_case_insensitive", "payee_name", "payee_id",
        "payee", "payees", "payee ID", "ID", "payee_ids",
    ),
    EntityType.COMPTROLLER: EntitySpec(
        "search_comptroller_case_insensitive", "comptroller_object_name", "comptroller_object_num",
        "comptroller object", "comptroller objects", "comptroller object number", "Number",
        "comptroller_ids",
    ),
}

DATABASE_ERROR_MESSAGE = "Error: Failed to query the database."


def _coerce_code(value):
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return value


class EntityResolver:
    """Turn a free-text name into ranked candidate codes."""

    def __init__(self, rpc: DatabaseRPC, candidate_limit: Optional[int] = None):
        self.rpc = rpc
        self.candidate_limit = candidate_limit or chatbot_config.entity_candidate_limit

    def search(self, entity_type: EntityType, search_term: str) -> list[EntityCandidate]:
        """Return candidates ordered by descending similarity.

        Raises:
            RPCError: the search function failed.
        """
        spec = ENTITY_SPECS[EntityType(entity_type)]
        rows = self.rpc.call_table(spec.function, {"search_term": search_term})

        candidates = [
            EntityCandidate(
                name=str(row.get(spec.name_column, "")),
                code=_coerce_code(row.get(spec.code_column)),
                similarity=row.get("similarity"),
            )
            for row in rows
            if row.get(spec.code_column) is not None
        ]
        # Stable sort keeps the database order among equal scores.
        candidates.sort(key=lambda c: c.similarity if c.similarity is not None else 0.0, reverse=True)
        return candidates[: self.candidate_limit]

    def lookup(self, entity_type: EntityType, search_term: str) -> LookupResult:
        """Resolve, disambiguate or report a miss for ``search_term``."""
        entity_type = EntityType(entity_type)
        spec = ENTITY_SPECS[entity_type]
        base = {"entity_type": entity_type.value, "search_term": search_term}

        try:
            candidates = self.search(entity_type, search_term)
        except RPCError as exc:
            logger.error("Lookup %s for %r failed: %s", entity_type.value, search_term, exc)
            return LookupResult(result=DATABASE_ERROR_MESSAGE, status="error", **base)

        if not candidates:
            return LookupResult(
                result=f'No {spec.noun} found for "{search_term}".',
                status="not_found",
                **base,
            )

        if len(candidates) == 1:
            item = candidates[0]
            return LookupResult(
                result=f"The {spec.code_phrase} for {item.name} is {item.code}.",
                status="resolved",
                candidates=candidates,
                **base,
            )

        listing = ", ".join(f"{c.name} ({spec.code_label}: {c.code})" for c in candidates)
        return LookupResult(
            result=f'Found multiple possible {spec.plural} for "{search_term}": {listing}.',
            status="ambiguous",
            candidates=candidates,
            **base,
        )


# (trigger words that mean the type is mentioned, search keywords tried in order)
WORKFLOW_KEYWORDS: dict[EntityType, tuple[tuple[str, ...], tuple[str, ...]]] = {
    EntityType.AGENCY: (
        ("agency", "department", "commission"),
        ("health", "human services", "transportation", "education", "public safety",
         "military", "parks", "wildlife", "senate", "house", "retirement"),
    ),
    EntityType.CATEGORY: (
        ("category", "spending type", "salaries", "benefits", "assistance", "outlay"),
        ("salary", "wage", "benefit", "assistance", "outlay", "capital",
         "intergovernmental", "expenditure", "transfer"),
    ),
    EntityType.PAYEE: (
        ("payee", "contractor", "vendor"),
        ("bank", "hospital", "university", "district", "system", "services"),
    ),
    EntityType.APPLICATION_FUND: (
        ("application fund", "fund", "revenue", "highway", "school fund", "technology"),
        ("revenue", "highway", "school", "technology", "debt service", "general",
         "available", "instructional", "materials"),
    ),
    EntityType.APPROPRIATION: (
        ("appropriation", "unappropriated", "oasi", "match"),
        ("unappropriated", "oasi", "match", "activity", "receipts", "exempt",
         "bond", "debt", "service"),
    ),
    EntityType.FUND: (
        ("fund",),
        ("general", "revenue", "capital", "debt", "operations", "bond",
         "highway", "education", "special"),
    ),
    EntityType.COMPTROLLER: (
        ("object", "comptroller", "line item", "classified", "exempt", "permanent",
         "non-permanent", "full-time", "part-time"),
        ("salary", "wage", "line item", "exempt", "classified", "non-classified",
         "permanent", "non-permanent", "full-time", "part-time", "employee"),
    ),
}

_MONTHS = [name.lower() for name in calendar.month_name[1:]]
_QUARTERS = {"q1": (1, 3), "q2": (4, 6), "q3": (7, 9), "q4": (10, 12)}


def _triggered(entity_type: EntityType, text: str) -> bool:
    triggers, _ = WORKFLOW_KEYWORDS[entity_type]
    if entity_type is EntityType.FUND and "application fund" in text:
        return False
    return any(trigger in text for trigger in triggers)


def derive_date_range(question: str, year: Optional[int] = None) -> Optional[DateRange]:
    """Pick a date window and granularity from time words in the question."""
    text = question.lower()
    year = year or int(chatbot_config.dataset_start_date[:4])
    if not any(word in text for word in ("month", "quarter", "year", str(year))):
        return None

    start, end = f"{year}-01-01", f"{year}-12-31"
    granularity = None
    for word, value in (
        ("daily", "daily"),
        ("weekly", "weekly"),
        ("month", "monthly"),
        ("quarter", "quarterly"),
        ("year", "yearly"),
    ):
        if word in text:
            granularity = value
            break

    for index, name in enumerate(_MONTHS, start=1):
        if re.search(rf"\b{name}\b", text):
            last_day = calendar.monthrange(year, index)[1]
            start, end = f"{year}-{index:02d}-01", f"{year}-{index:02d}-{last_day:02d}"
            granularity = "monthly"
            break

    for quarter, (first, last) in _QUARTERS.items():
        if re.search(rf"\b{quarter}\b", text):
            last_day = calendar.monthrange(year, last)[1]
            start, end = f"{year}-{first:02d}-01", f"{year}-{last:02d}-{last_day:02d}"
            granularity = "quarterly"
            break

    return DateRange(start=start, end=end, granularity=granularity)


async def _resolve_type(
    resolver: EntityResolver, entity_type: EntityType, text: str
) -> list[EntityCandidate]:
    _, keywords = WORKFLOW_KEYWORDS[entity_type]
    found: list[EntityCandidate] = []
    for keyword in keywords:
        if keyword not in text:
            continue
        try:
            candidates = await asyncio.to_thread(resolver.search, entity_type, keyword)
        except RPCError as exc:
            logger.warning("Failed to resolve %s for keyword %r: %s", entity_type.value, keyword, exc)
            continue
        if candidates:
            found.append(candidates[0])
    return found


async def resolve_entities_workflow(question: str, resolver: EntityResolver) -> ResolvedEntitySet:
    """Pre-resolve entity codes mentioned in ``question``.

    Every triggered entity type is searched concurrently; within a type the
    best match for each keyword present is kept.
    """
    text = question.lower()
    entities = ResolvedEntitySet()

    triggered = [entity_type for entity_type in WORKFLOW_KEYWORDS if _triggered(entity_type, text)]
    results = await asyncio.gather(
        *(_resolve_type(resolver, entity_type, text) for entity_type in triggered)
    )
    for entity_type, candidates in zip(triggered, results):
        field_name = ENTITY_SPECS[entity_type].result_field
        for candidate in candidates:
            entities.add(field_name, candidate)

    entities.date_range = derive_date_range(question)
    if not entities.is_empty():
        logger.info("Pre-resolved entities: %s", entities.describe())
    return entities
