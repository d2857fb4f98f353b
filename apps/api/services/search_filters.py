"""Filter builder: turns search criteria into a composed catalog predicate.

The functions here never touch the database. ``build_search_criteria``
validates and normalizes a request (including premium access control) and
``build_search_predicate`` turns the result into a SQLAlchemy clause that the
search service executes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Collection, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.sql.elements import ColumnElement

from models.catalog_item import STATUS_ACTIVE, CatalogItem
from models.category import Category
from models.tag import Tag
from services.errors import AuthorizationError, ValidationError
from services.viewer import Viewer

MAX_SEARCH_TERMS = 10
MIN_TERM_LENGTH = 2
MAX_QUERY_LENGTH = 255

# Request field name -> CatalogItem column attribute.
NUMERIC_RANGE_FIELDS = {
    "views": "views",
    "likes": "likes",
    "favorites": "favorites",
    "downloads": "downloads",
    "popularityScore": "popularity_score",
    "popularity_score": "popularity_score",
}

_NON_WORD = re.compile(r"[^\w\s-]")


@dataclass(frozen=True)
class NumericRange:
    column: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class SearchCriteria:
    text: str = ""
    terms: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    featured: Optional[bool] = None
    verified: Optional[bool] = None
    premium: Optional[bool] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    numeric_ranges: Tuple[NumericRange, ...] = field(default_factory=tuple)

    def cache_fingerprint(self) -> Dict[str, Any]:
        """Stable, JSON-friendly view used for cache keys and analytics."""
        return {
            "text": self.text,
            "terms": list(self.terms),
            "categories": sorted(self.categories),
            "tags": sorted(self.tags),
            "featured": self.featured,
            "verified": self.verified,
            "premium": self.premium,
            "created_from": self.created_from.isoformat() if self.created_from else None,
            "created_to": self.created_to.isoformat() if self.created_to else None,
            "numeric_ranges": [
                [r.column, r.minimum, r.maximum] for r in sorted(self.numeric_ranges, key=lambda r: r.column)
            ],
        }


def tokenize_search_text(text: Any) -> List[str]:
    """Lowercase, strip punctuation, drop short terms and cap the term count."""
    cleaned = _NON_WORD.sub(" ", str(text or "").lower())
    terms: List[str] = []
    for raw in cleaned.split():
        term = raw.strip("-")
        if len(term) < MIN_TERM_LENGTH:
            continue
        terms.append(term)
        if len(terms) >= MAX_SEARCH_TERMS:
            break
    return terms


def build_tsquery(terms: Collection[str]) -> str:
    """PostgreSQL tsquery: every term as a prefix match, ANDed together."""
    return " & ".join(f"{term}:*" for term in terms)


def _string_list(value: Any, field_name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError(f"{field_name} must be a list of strings", field=field_name, constraint="list[str]")
    seen: Dict[str, None] = {}
    for entry in value:
        text = str(entry or "").strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _optional_bool(value: Any, field_name: str) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{field_name} must be a boolean", field=field_name, constraint="bool")


def _parse_bound(value: Any, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(
                f"{field_name} must be an ISO 8601 timestamp",
                field=field_name,
                constraint="ISO 8601",
            ) from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _numeric_bound(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be numeric", field=field_name, constraint="number") from exc


def _numeric_ranges(value: Any) -> Tuple[NumericRange, ...]:
    if not value:
        return ()
    if not isinstance(value, Mapping):
        raise ValidationError("numericRanges must be an object", field="filters.numericRanges", constraint="object")
    ranges: List[NumericRange] = []
    for name, bounds in value.items():
        column = NUMERIC_RANGE_FIELDS.get(str(name))
        if column is None:
            raise ValidationError(
                f"Unsupported numeric range field '{name}'",
                field=f"filters.numericRanges.{name}",
                constraint="one of views, likes, favorites, downloads, popularityScore",
            )
        bounds = bounds if isinstance(bounds, Mapping) else {}
        minimum = _numeric_bound(bounds.get("min"), f"filters.numericRanges.{name}.min")
        maximum = _numeric_bound(bounds.get("max"), f"filters.numericRanges.{name}.max")
        if minimum is not None and maximum is not None and minimum > maximum:
            raise ValidationError(
                f"numericRanges.{name}.min must not exceed max",
                field=f"filters.numericRanges.{name}",
                constraint="min <= max",
            )
        if minimum is None and maximum is None:
            continue
        ranges.append(NumericRange(column=column, minimum=minimum, maximum=maximum))
    return tuple(ranges)


def resolve_premium_scope(requested: Optional[bool], viewer: Viewer) -> Optional[bool]:
    """Effective premium constraint for the caller.

    Anonymous callers are pinned to free items; an explicit premium request
    from anyone who is not premium or admin is rejected instead of degraded.
    """
    if requested is True:
        if not viewer.authenticated:
            raise AuthorizationError.authentication_required("Authentication required for premium content")
        if not viewer.entitled:
            raise AuthorizationError("Premium account required")
        return True
    if requested is False:
        return False
    return None if viewer.authenticated else False


def build_search_criteria(payload: Mapping[str, Any], viewer: Viewer) -> SearchCriteria:
    """Validate the query text and ``filters`` block into ``SearchCriteria``."""
    text = str(payload.get("query") or "").strip()
    if len(text) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"query must be at most {MAX_QUERY_LENGTH} characters",
            field="query",
            constraint=f"maxLength={MAX_QUERY_LENGTH}",
        )
    filters = payload.get("filters") or {}
    if not isinstance(filters, Mapping):
        raise ValidationError("filters must be an object", field="filters", constraint="object")

    date_range = filters.get("dateRange") or {}
    if not isinstance(date_range, Mapping):
        raise ValidationError("dateRange must be an object", field="filters.dateRange", constraint="object")
    created_from = _parse_bound(date_range.get("from"), "filters.dateRange.from")
    created_to = _parse_bound(date_range.get("to"), "filters.dateRange.to")
    if created_from and created_to and created_from > created_to:
        raise ValidationError(
            "dateRange.from must not be after dateRange.to",
            field="filters.dateRange",
            constraint="from <= to",
        )

    premium = resolve_premium_scope(_optional_bool(filters.get("premium"), "filters.premium"), viewer)

    return SearchCriteria(
        text=text,
        terms=tuple(tokenize_search_text(text)),
        categories=_string_list(filters.get("categories"), "filters.categories"),
        tags=tuple(dict.fromkeys(tag.lower() for tag in _string_list(filters.get("tags"), "filters.tags"))),
        featured=_optional_bool(filters.get("featured"), "filters.featured"),
        verified=_optional_bool(filters.get("verified"), "filters.verified"),
        premium=premium,
        created_from=created_from,
        created_to=created_to,
        numeric_ranges=_numeric_ranges(filters.get("numericRanges")),
    )


def _full_text_clause(terms: Tuple[str, ...]) -> ColumnElement:
    document = func.coalesce(CatalogItem.title, "") + " " + func.coalesce(CatalogItem.description, "")
    ts_match = func.to_tsvector("english", document).bool_op("@@")(
        func.to_tsquery("english", build_tsquery(terms))
    )
    code_match = and_(*[CatalogItem.code.contains(term, autoescape=True) for term in terms])
    return or_(ts_match, code_match)


def _substring_clause(terms: Tuple[str, ...]) -> ColumnElement:
    return and_(
        *[
            or_(
                CatalogItem.title.icontains(term, autoescape=True),
                CatalogItem.description.icontains(term, autoescape=True),
                CatalogItem.code.icontains(term, autoescape=True),
            )
            for term in terms
        ]
    )


def build_search_predicate(
    criteria: SearchCriteria,
    *,
    full_text: bool = False,
    exclude: Collection[str] = (),
) -> ColumnElement:
    """Compose the WHERE clause for ``criteria``; ``exclude`` drops facet dimensions."""
    clauses: List[ColumnElement] = [CatalogItem.status == STATUS_ACTIVE]

    if criteria.terms:
        clauses.append(_full_text_clause(criteria.terms) if full_text else _substring_clause(criteria.terms))

    if criteria.categories and "categories" not in exclude:
        clauses.append(CatalogItem.categories.any(Category.slug.in_(criteria.categories)))

    if criteria.tags and "tags" not in exclude:
        clauses.append(CatalogItem.tags.any(Tag.name.in_(criteria.tags)))

    if criteria.featured is not None:
        clauses.append(CatalogItem.featured.is_(criteria.featured))

    if criteria.verified is not None:
        clauses.append(CatalogItem.verified.is_(criteria.verified))

    if criteria.premium is not None and "premium" not in exclude:
        clauses.append(CatalogItem.premium.is_(criteria.premium))

    if criteria.created_from is not None:
        clauses.append(CatalogItem.created_at >= criteria.created_from)
    if criteria.created_to is not None:
        clauses.append(CatalogItem.created_at <= criteria.created_to)

    for numeric in criteria.numeric_ranges:
        column = getattr(CatalogItem, numeric.column)
        if numeric.minimum is not None:
            clauses.append(column >= numeric.minimum)
        if numeric.maximum is not None:
            clauses.append(column <= numeric.maximum)

    return and_(*clauses)
