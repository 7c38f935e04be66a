"""
Discovery engine: filter, match, rank and paginate server records.

Read-only over the record store. Each query reads a fresh snapshot
(one key lookup per requested domain, or one full scan) and resolves
entirely from it, so identical queries over an unchanged store return
identical ordered results.

Query dimensions are resolved in priority order:

    1. domain / domains      direct lookups, match score 1.0
    2. similar_to            tag-set similarity to a reference server
    3. capabilities / intent weighted tag matching
    4. category / keywords   plain listing, match score 1.0

Lower-priority selectors are ignored when a higher one is present.
Category, keywords, use cases, technical and performance constraints
are hard filters in every mode.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from . import store as kv
from .config import DISCOVERY_DEADLINE_SECONDS, PREFERRED_MATCH_WEIGHT
from .intent import IntentResolution, resolve_intent, similar_intents
from .models import HealthStatus, ServerRecord
from .schemas import CapabilityQuery, DiscoveryQuery, MatchOperator, SortBy
from .store import RecordStore
from .validators import is_valid_tag

logger = logging.getLogger(__name__)

# Combined ranking weights
MATCH_WEIGHT = 0.5
TRUST_WEIGHT = 0.3
UPTIME_WEIGHT = 0.2


@dataclass
class ScoredServer:
    record: ServerRecord
    match_score: float

    @property
    def combined_score(self) -> float:
        uptime = self.record.health.uptime_percentage if _probed(self.record) else 0.0
        return (
            self.match_score * MATCH_WEIGHT
            + max(0, min(100, self.record.trust_score)) / 100 * TRUST_WEIGHT
            + max(0.0, min(100.0, uptime)) / 100 * UPTIME_WEIGHT
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_public_dict()
        data["match_score"] = round(self.match_score, 4)
        data["relevance_score"] = round(self.combined_score, 4)
        return data


def _probed(record: ServerRecord) -> bool:
    return record.health.total_checks > 0 or record.health.status != HealthStatus.UNKNOWN


def capability_match(
    query: CapabilityQuery,
    tags: set[str],
    preferred_weight: float = PREFERRED_MATCH_WEIGHT,
) -> float | None:
    """
    Score a candidate's tag set against a capability query.

    Returns None when the candidate is eliminated, otherwise a score in
    [0, 1]: matched required tags count 1, matched preferred tags count
    ``preferred_weight``, over the same weights for all requested tags.
    """
    if any(tag in tags for tag in query.exclude):
        return None

    required = set(query.required)
    preferred = set(query.preferred) - required

    if query.operator == MatchOperator.NOT:
        # Required tags become exclusions; only preferred tags score
        if required & tags:
            return None
        required = set()

    matched_required = required & tags
    matched_preferred = preferred & tags

    if query.operator == MatchOperator.AND and matched_required != required:
        return None
    if query.operator == MatchOperator.OR and (required or preferred):
        if not (matched_required or matched_preferred):
            return None

    denominator = len(required) + preferred_weight * len(preferred)
    if denominator == 0:
        score = 1.0
    else:
        score = (len(matched_required) + preferred_weight * len(matched_preferred)) / denominator

    if score < query.minimum_match:
        return None
    return score


def jaccard(left: set[str], right: set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


class DiscoveryEngine:
    """Resolves discovery queries against the record store."""

    def __init__(
        self,
        store: RecordStore,
        preferred_weight: float = PREFERRED_MATCH_WEIGHT,
        deadline_seconds: float = DISCOVERY_DEADLINE_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.preferred_weight = preferred_weight
        self.deadline_seconds = deadline_seconds
        self.monotonic = monotonic

    async def discover(self, query: DiscoveryQuery) -> dict[str, Any]:
        """
        Run a discovery query.

        Returns:
            servers, total_results, query_echo, pagination, query_metadata,
            and suggestions when nothing matched
        """
        started = self.monotonic()
        deadline = started + self.deadline_seconds
        filters_applied: list[str] = []
        ignored: list[str] = []
        suggestions: list[str] = []
        truncated = False

        mode = self._select_mode(query, ignored)

        if mode == "domain":
            filters_applied.append("domain_exact")
            candidates = await self._lookup_domains(query)
        else:
            candidates = [
                ServerRecord.from_dict(d) for d in await self.store.get_all(kv.SERVERS)
            ]

        candidates = self._apply_filters(candidates, query, filters_applied)

        scored: list[ScoredServer] = []
        if mode in ("domain", "listing"):
            if mode == "listing":
                filters_applied.append("listing")
            scored = [ScoredServer(record, 1.0) for record in candidates]
        elif mode == "similar":
            filters_applied.append("similarity")
            scored, truncated = await self._score_similar(query, candidates, deadline, suggestions)
        else:
            scored, truncated = self._score_capabilities(
                query, candidates, deadline, filters_applied
            )

        ordered = self._rank(scored, query.sort_by)
        total = len(ordered)
        page = ordered[query.offset : query.offset + query.limit]

        if total == 0:
            suggestions.extend(self._suggestions(query))

        if truncated:
            logger.warning(
                f"Discovery deadline of {self.deadline_seconds}s reached; results truncated"
            )

        return {
            "servers": [item.to_dict() for item in page],
            "total_results": total,
            "query_echo": query.model_dump(mode="json", exclude_unset=True),
            "pagination": {
                "offset": query.offset,
                "limit": query.limit,
                "returned": len(page),
                "has_more": query.offset + len(page) < total,
            },
            "query_metadata": {
                "mode": mode,
                "filters_applied": filters_applied,
                "ignored": ignored,
                "truncated": truncated,
                "query_time_ms": round((self.monotonic() - started) * 1000, 3),
            },
            "suggestions": suggestions,
        }

    # ==================== Mode selection ====================

    @staticmethod
    def _select_mode(query: DiscoveryQuery, ignored: list[str]) -> str:
        capability_query = query.capability_query()
        has_capabilities = bool(
            (capability_query and not capability_query.is_empty) or query.effective_intent
        )

        if query.domain or query.domains:
            for name, present in (
                ("similar_to", query.similar_to),
                ("capabilities", has_capabilities),
            ):
                if present:
                    ignored.append(name)
            return "domain"

        if query.similar_to:
            if has_capabilities:
                ignored.append("capabilities")
            return "similar"

        if has_capabilities:
            return "capabilities"

        return "listing"

    async def _lookup_domains(self, query: DiscoveryQuery) -> list[ServerRecord]:
        domains: list[str] = []
        for domain in ([query.domain] if query.domain else []) + (query.domains or []):
            if domain and domain not in domains:
                domains.append(domain)

        records = []
        for domain in domains:
            data = await self.store.get(kv.SERVERS, domain)
            if data:
                records.append(ServerRecord.from_dict(data))
        return records

    # ==================== Hard filters ====================

    def _apply_filters(
        self,
        candidates: list[ServerRecord],
        query: DiscoveryQuery,
        filters_applied: list[str],
    ) -> list[ServerRecord]:
        perf = query.performance
        tech = query.technical

        # Unverified records are never discoverable, whatever verified_only says
        filters_applied.append("verified_only")
        result = [r for r in candidates if r.is_discoverable(healthy_only=perf.healthy_only)]
        if perf.healthy_only:
            filters_applied.append("healthy_only")

        if query.exclude_domains:
            filters_applied.append("exclude_domains")
            excluded = set(query.exclude_domains)
            result = [r for r in result if r.domain not in excluded]

        if perf.min_uptime is not None:
            filters_applied.append("min_uptime")
            result = [
                r for r in result
                if _probed(r) and r.health.uptime_percentage >= perf.min_uptime
            ]

        if perf.max_response_time is not None:
            filters_applied.append("max_response_time")
            result = [
                r for r in result
                if _probed(r) and r.health.avg_response_time_ms <= perf.max_response_time
            ]

        if perf.min_trust_score is not None:
            filters_applied.append("min_trust_score")
            result = [r for r in result if r.trust_score >= perf.min_trust_score]

        if tech.auth_types:
            filters_applied.append("auth_types")
            allowed = set(tech.auth_types)
            result = [r for r in result if r.auth_type in allowed]

        if tech.transport is not None:
            filters_applied.append("transport")
            result = [r for r in result if r.transport == tech.transport]

        if tech.cors_support:
            filters_applied.append("cors_support")
            result = [r for r in result if r.cors_enabled]

        if query.category is not None:
            filters_applied.append("category")
            result = [r for r in result if r.capabilities.category == query.category]

        if query.keywords:
            filters_applied.append("keywords")
            result = [r for r in result if _matches_keywords(r, query.keywords)]

        if query.use_cases:
            filters_applied.append("use_cases")
            result = [r for r in result if _matches_use_cases(r, query.use_cases)]

        return result

    # ==================== Scoring ====================

    def _score_capabilities(
        self,
        query: DiscoveryQuery,
        candidates: list[ServerRecord],
        deadline: float,
        filters_applied: list[str],
    ) -> tuple[list[ScoredServer], bool]:
        capability_query = query.capability_query()
        resolution: IntentResolution | None = None
        match_keywords = False

        if query.effective_intent:
            resolution = resolve_intent(query.effective_intent)
            capability_query, match_keywords = self._merge_intent(capability_query, resolution)
            filters_applied.append("intent" if resolution.from_lexicon else "intent_keywords")

        if capability_query is not None:
            filters_applied.append(f"capabilities_{capability_query.operator.value.lower()}")

        scored: list[ScoredServer] = []
        for record in candidates:
            if self.monotonic() > deadline:
                return scored, True

            tags = record.capabilities.tag_set
            if match_keywords:
                tags = tags | record.capabilities.keyword_set

            if capability_query is None:
                score = 1.0
            else:
                score = capability_match(capability_query, tags, self.preferred_weight)
            if score is not None:
                scored.append(ScoredServer(record, score))

        return scored, False

    @staticmethod
    def _merge_intent(
        capability_query: CapabilityQuery | None,
        resolution: IntentResolution,
    ) -> tuple[CapabilityQuery | None, bool]:
        """
        Fold intent tags into the capability query as preferred tags.

        Without an explicit capability query the intent alone selects
        servers, so at least one tag must match (OR).
        """
        intent_tags = [t for t in (resolution.tags or resolution.keywords) if is_valid_tag(t)]
        match_keywords = not resolution.from_lexicon

        if not intent_tags:
            return capability_query, match_keywords

        if capability_query is None:
            return CapabilityQuery(operator=MatchOperator.OR, preferred=intent_tags), match_keywords

        preferred = list(capability_query.preferred)
        for tag in intent_tags:
            if tag not in preferred:
                preferred.append(tag)
        return capability_query.model_copy(update={"preferred": preferred}), match_keywords

    async def _score_similar(
        self,
        query: DiscoveryQuery,
        candidates: list[ServerRecord],
        deadline: float,
        suggestions: list[str],
    ) -> tuple[list[ScoredServer], bool]:
        similar_to = query.similar_to
        data = await self.store.get(kv.SERVERS, similar_to.reference_domain)
        if not data:
            suggestions.append(
                f"'{similar_to.reference_domain}' is not registered; search by capability instead"
            )
            return [], False

        reference = ServerRecord.from_dict(data).capabilities.tag_set
        scored: list[ScoredServer] = []
        for record in candidates:
            if self.monotonic() > deadline:
                return scored, True
            if similar_to.exclude_reference and record.domain == similar_to.reference_domain:
                continue
            similarity = jaccard(reference, record.capabilities.tag_set)
            if similarity >= similar_to.threshold and similarity > 0:
                scored.append(ScoredServer(record, similarity))
        return scored, False

    # ==================== Ranking ====================

    @staticmethod
    def _rank(scored: list[ScoredServer], sort_by: SortBy | None) -> list[ScoredServer]:
        """Best first; ties broken by domain so the order is total."""

        def key(item: ScoredServer) -> tuple:
            record = item.record
            if sort_by is None:
                primary = -item.combined_score
            elif sort_by == SortBy.RELEVANCE:
                primary = -item.match_score
            elif sort_by == SortBy.UPTIME:
                primary = -(record.health.uptime_percentage if _probed(record) else 0.0)
            elif sort_by == SortBy.RESPONSE_TIME:
                # Lower latency first; never-probed servers last
                primary = record.health.avg_response_time_ms if _probed(record) else math.inf
            elif sort_by == SortBy.CREATED_AT:
                primary = -record.created_at.timestamp()
            else:
                primary = -record.trust_score
            return (primary, record.domain)

        return sorted(scored, key=key)

    @staticmethod
    def _suggestions(query: DiscoveryQuery) -> list[str]:
        suggestions: list[str] = []
        if query.effective_intent:
            suggestions.extend(f'Try: "{p}"' for p in similar_intents(query.effective_intent))
        if query.category is not None:
            suggestions.append("Try other categories: communication, productivity, data")
        if query.performance.healthy_only and not (query.domain or query.domains):
            suggestions.append("Set performance.healthy_only to false to include unhealthy servers")
        return suggestions[:3]


def _matches_keywords(record: ServerRecord, keywords: list[str]) -> bool:
    vocabulary = record.capabilities.keyword_set | record.capabilities.tag_set
    text = f"{record.name} {record.description}".lower()
    return any(k in vocabulary or k in text for k in keywords)


def _matches_use_cases(record: ServerRecord, use_cases: list[str]) -> bool:
    server_use_cases = [u.lower() for u in record.capabilities.use_cases]
    return any(wanted in have for wanted in use_cases for have in server_use_cases)
