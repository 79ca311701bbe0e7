"""Keyword-driven request classification.

Classification is a total, deterministic function over a request and the
project state snapshot: every input maps to exactly one category.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

from specflow.config import ClassifierConfig, PlannerConfig, SpecflowConfig
from specflow.models import ProjectStateSnapshot, Request, RequestCategory

logger = logging.getLogger(__name__)

WHITESPACE_PATTERN = re.compile(r"\s+")

# Highest priority first. NEW_PROJECT is the last resort once prior docs exist.
CATEGORY_PRIORITY = (
    RequestCategory.BUG_FIX,
    RequestCategory.REFACTOR,
    RequestCategory.ENHANCEMENT,
    RequestCategory.NEW_PROJECT,
)


def _normalize(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text.lower()).strip()


def _term_pattern(term: str) -> re.Pattern[str]:
    words = [re.escape(part) for part in _normalize(term).split(" ") if part]
    return re.compile(r"(?<![\w-])" + r"\s+".join(words) + r"(?![\w-])")


def _matching_terms(text: str, terms: Iterable[str]) -> set[str]:
    normalized = _normalize(text)
    if not normalized:
        return set()
    matched: set[str] = set()
    for term in terms:
        key = _normalize(term)
        if key and _term_pattern(key).search(normalized):
            matched.add(key)
    return matched


def extract_keywords(text: str, vocabularies: Mapping[str, Iterable[str]]) -> frozenset[str]:
    matched: set[str] = set()
    for terms in vocabularies.values():
        matched |= _matching_terms(text, terms)
    return frozenset(matched)


class RequestClassifier:
    def __init__(
        self,
        classifier_config: ClassifierConfig | None = None,
        planner_config: PlannerConfig | None = None,
    ) -> None:
        self.config = classifier_config or ClassifierConfig()
        self.integration_terms = list((planner_config or PlannerConfig()).integration_terms)

    @classmethod
    def from_config(cls, config: SpecflowConfig) -> RequestClassifier:
        return cls(config.classifier, config.planner)

    def vocabularies(self) -> dict[str, list[str]]:
        return {
            RequestCategory.NEW_PROJECT.value: list(self.config.new_project_terms),
            RequestCategory.BUG_FIX.value: list(self.config.bug_fix_terms),
            RequestCategory.ENHANCEMENT.value: list(self.config.enhancement_terms),
            RequestCategory.REFACTOR.value: list(self.config.refactor_terms),
            "FUNCTIONAL_CHANGE": list(self.config.functional_change_terms),
            "INTEGRATION": self.integration_terms,
        }

    def build_request(self, text: str | None) -> Request:
        raw_text = text or ""
        return Request(
            raw_text=raw_text,
            detected_keywords=extract_keywords(raw_text, self.vocabularies()),
        )

    def _category_matches(
        self, request: Request, snapshot: ProjectStateSnapshot
    ) -> dict[RequestCategory, bool]:
        text = request.raw_text
        mentions_known_issue = bool(
            snapshot.known_issues and _matching_terms(text, snapshot.known_issues)
        )
        return {
            RequestCategory.BUG_FIX: bool(_matching_terms(text, self.config.bug_fix_terms))
            or mentions_known_issue,
            RequestCategory.REFACTOR: bool(_matching_terms(text, self.config.refactor_terms))
            and not _matching_terms(text, self.config.functional_change_terms),
            RequestCategory.ENHANCEMENT: bool(
                _matching_terms(text, self.config.enhancement_terms)
            ),
            RequestCategory.NEW_PROJECT: bool(
                _matching_terms(text, self.config.new_project_terms)
            ),
        }

    def classify(self, request: Request, snapshot: ProjectStateSnapshot) -> RequestCategory:
        if not snapshot.has_prior_docs:
            category = RequestCategory.NEW_PROJECT
        else:
            matches = self._category_matches(request, snapshot)
            category = next(
                (candidate for candidate in CATEGORY_PRIORITY if matches[candidate]),
                RequestCategory.ENHANCEMENT,
            )
        logger.debug(
            "Classified request %r as %s (prior_docs=%s)",
            request.raw_text[:80],
            category.value,
            snapshot.has_prior_docs,
        )
        return category


_default_classifier = RequestClassifier()


def build_request(text: str | None, config: SpecflowConfig | None = None) -> Request:
    if config is None:
        return _default_classifier.build_request(text)
    return RequestClassifier.from_config(config).build_request(text)


def classify(request: Request, snapshot: ProjectStateSnapshot) -> RequestCategory:
    return _default_classifier.classify(request, snapshot)
