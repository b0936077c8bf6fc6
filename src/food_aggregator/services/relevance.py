"""Local relevance filtering and ranking for free-text food searches.

Upstream full-text scoring is noisy, so the USDA and Open Food Facts adapters
fetch extra candidates and re-rank them here before slicing to a page.
"""

import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, field

from food_aggregator.domain.food import NormalizedFoodItem

_POSSESSIVE = re.compile(r"['’]s\b")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_HOT_DOG_SYNONYMS = (("frank",), ("frankfurter",), ("wiener",))

STOP_WORDS = frozenset(
    {"the", "and", "or", "with", "for", "from", "of", "to", "in", "on"}
)


def normalize_text(value: str | None) -> str:
    """Lowercase, strip accents and possessives, collapse punctuation."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    ascii_ish = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    without_possessive = _POSSESSIVE.sub("", ascii_ish)
    return _NON_ALNUM.sub(" ", without_possessive).strip()


def stem_token(token: str) -> str:
    """Very small plural stemmer: ``berries`` -> ``berry``, ``dogs`` -> ``dog``."""
    if len(token) > 4 and token.endswith("ies"):
        return f"{token[:-3]}y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


@dataclass(frozen=True)
class Tokenizer:
    """Turns text into a de-duplicated list of stemmed tokens."""

    stop_words: frozenset[str] = frozenset()
    min_length: int = 1

    def tokenize(self, text: str | None) -> list[str]:
        normalized = normalize_text(text)
        tokens: list[str] = []
        for raw in normalized.split():
            if raw in self.stop_words or len(raw) < self.min_length:
                continue
            token = stem_token(raw)
            if token and token not in tokens:
                tokens.append(token)
        return tokens


@dataclass(frozen=True)
class QueryTokens:
    """A query split into brand and product parts."""

    normalized_query: str
    normalized_product_query: str
    brand_tokens: list[str] = field(default_factory=list)
    product_tokens: list[str] = field(default_factory=list)
    normalized_brand_query: str | None = None
    raw_brand_query: str | None = None

    @property
    def all_tokens(self) -> list[str]:
        return [*self.brand_tokens, *self.product_tokens]

    @property
    def is_brand_scoped(self) -> bool:
        return bool(self.brand_tokens) and bool(self.product_tokens)


def split_query_tokens(query: str, tokenizer: Tokenizer) -> QueryTokens:
    """Split ``"trader joe's hot dogs"`` into brand and product tokens."""
    normalized_query = normalize_text(query)
    lower = query.lower()
    indexes = [idx for idx in (lower.find("'s"), lower.find("’s")) if idx >= 0]
    if indexes:
        possessive_index = min(indexes)
        brand_part = query[:possessive_index]
        product_part = query[possessive_index + 2 :]
        brand_tokens = tokenizer.tokenize(brand_part)
        product_tokens = tokenizer.tokenize(product_part)
        if brand_tokens and product_tokens:
            return QueryTokens(
                normalized_query=normalized_query,
                normalized_product_query=normalize_text(product_part)
                or normalized_query,
                brand_tokens=brand_tokens,
                product_tokens=product_tokens,
                normalized_brand_query=normalize_text(brand_part),
                raw_brand_query=query[: possessive_index + 2],
            )
    return QueryTokens(
        normalized_query=normalized_query,
        normalized_product_query=normalized_query,
        product_tokens=tokenizer.tokenize(query),
    )


def query_from_tokens(tokens: Sequence[str], fallback: str) -> str:
    """Join stemmed tokens back into an upstream query string."""
    return " ".join(tokens).strip() or fallback


@dataclass(frozen=True)
class RankingWeights:
    """Score bonuses applied on top of token matching."""

    has_calories: int = 2
    has_brand_or_barcode: int = 5
    brand_phrase_match: int = 0
    locale_match: int = 0


@dataclass(frozen=True)
class RelevanceRanker:
    """Filters and orders normalized items by how well they match a query."""

    tokenizer: Tokenizer
    weights: RankingWeights = RankingWeights()
    min_possessive_product_score: int = 20
    substring_min_length: int = 4

    def filter_items(
        self, items: Sequence[NormalizedFoodItem], tokens: QueryTokens
    ) -> list[NormalizedFoodItem]:
        """Drop items that do not contain any meaningful query token."""
        query_tokens = tokens.all_tokens
        if not query_tokens:
            return list(items)
        groups = self._product_token_groups(tokens.product_tokens)
        kept: list[NormalizedFoodItem] = []
        for item in items:
            haystack = self._haystack(item)
            if not haystack:
                continue
            haystack_tokens = set(self.tokenizer.tokenize(haystack))
            if tokens.is_brand_scoped:
                score = self._score_groups(haystack_tokens, groups)
                if score >= self.min_possessive_product_score:
                    kept.append(item)
                continue
            if any(
                self._includes(haystack_tokens, haystack, token)
                for token in query_tokens
            ):
                kept.append(item)
        return kept

    def rank_items(
        self,
        items: Sequence[NormalizedFoodItem],
        tokens: QueryTokens,
        language_code: str | None = None,
    ) -> list[NormalizedFoodItem]:
        """Stable sort by descending relevance score."""
        if not tokens.normalized_query or not tokens.all_tokens:
            return list(items)
        groups = self._product_token_groups(tokens.product_tokens)
        scored: list[tuple[int, int, NormalizedFoodItem]] = []
        for index, item in enumerate(items):
            score = self._score_item(item, tokens, groups, language_code)
            scored.append((score, index, item))
        if not any(score > 0 for score, _, _ in scored):
            return list(items)
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [item for _, _, item in scored]

    def _score_item(
        self,
        item: NormalizedFoodItem,
        tokens: QueryTokens,
        groups: list[list[str]],
        language_code: str | None,
    ) -> int:
        description = normalize_text(item.description)
        brand = normalize_text(item.brand)
        haystack_tokens = set(self.tokenizer.tokenize(f"{description} {brand}"))

        # Product matches outweigh brand matches so "hot dog" beats "hot sauce".
        score = self._score_groups(haystack_tokens, groups)
        brand_matches = _count_matches(haystack_tokens, tokens.brand_tokens)
        score += _score_matches(brand_matches, len(tokens.brand_tokens), 50, 10)

        if description == tokens.normalized_query:
            score += 40
        elif description.startswith(tokens.normalized_query):
            score += 25
        elif tokens.normalized_query in description:
            score += 10

        product_query = tokens.normalized_product_query
        if product_query and product_query != tokens.normalized_query:
            if product_query in description:
                score += 10

        if (
            self.weights.brand_phrase_match
            and tokens.normalized_brand_query
            and tokens.normalized_brand_query in brand
        ):
            score += self.weights.brand_phrase_match
        if item.nutrients_per_100g is not None:
            score += self.weights.has_calories
        if (
            self.weights.locale_match
            and language_code
            and item.locale == language_code
        ):
            score += self.weights.locale_match
        if item.brand or item.barcode:
            score += self.weights.has_brand_or_barcode
        return score

    def _haystack(self, item: NormalizedFoodItem) -> str:
        description = normalize_text(item.description)
        return f"{description} {normalize_text(item.brand)}".strip()

    def _includes(self, haystack_tokens: set[str], haystack: str, token: str) -> bool:
        if token in haystack_tokens:
            return True
        return len(token) >= self.substring_min_length and token in haystack

    def _product_token_groups(self, product_tokens: list[str]) -> list[list[str]]:
        groups: list[list[str]] = []
        if product_tokens:
            groups.append(list(product_tokens))
        if "hot" in product_tokens and "dog" in product_tokens:
            groups.extend(list(group) for group in _HOT_DOG_SYNONYMS)
        return [[stem_token(token) for token in group] for group in groups]

    def _score_groups(self, haystack: set[str], groups: list[list[str]]) -> int:
        best = 0
        for group in groups:
            matches = _count_matches(haystack, group)
            best = max(best, _score_matches(matches, len(group), 100, 10))
        return best


def _count_matches(haystack: set[str], tokens: Sequence[str]) -> int:
    return sum(1 for token in tokens if token in haystack)


def _score_matches(matches: int, total: int, full_score: int, partial: int) -> int:
    if total == 0:
        return 0
    if matches >= total:
        return full_score
    return matches * partial
