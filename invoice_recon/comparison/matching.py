"""Best-effort matching of invoice line descriptions to contract pricing terms."""

import re
from dataclasses import dataclass

from invoice_recon.extraction.schema import PricingTerm

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> list[str]:
    """Lower-case alphanumeric tokens with a trailing plural 's' removed."""
    tokens = []
    for token in _TOKEN_RE.findall(text.lower()):
        if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
            token = token[:-1]
        tokens.append(token)
    return tokens


def similarity(description: str, item: str) -> float:
    """Score how well an invoice description names a contract item.

    1.0 when either normalised phrase contains the other, otherwise the share
    of the contract item's tokens present in the description.
    """
    desc_tokens = tokenize(description)
    item_tokens = tokenize(item)
    if not desc_tokens or not item_tokens:
        return 0.0

    desc_phrase = f" {' '.join(desc_tokens)} "
    item_phrase = f" {' '.join(item_tokens)} "
    if item_phrase in desc_phrase or desc_phrase in item_phrase:
        return 1.0

    overlap = set(desc_tokens) & set(item_tokens)
    return len(overlap) / len(set(item_tokens))


@dataclass(frozen=True)
class TermMatch:
    """A pricing term chosen for an invoice line."""

    term: PricingTerm
    term_index: int
    score: float


def match_pricing_term(
    description: str, pricing: list[PricingTerm], floor: float
) -> TermMatch | None:
    """Pick the best pricing term for a line description.

    Args:
        description: Invoice line description
        pricing: Contract pricing terms
        floor: Minimum similarity for a match

    Returns:
        Highest scoring term at or above the floor (earliest wins ties), else None
    """
    best: TermMatch | None = None
    for index, term in enumerate(pricing):
        score = similarity(description, term.item)
        if score < floor or score == 0:
            continue
        if best is None or score > best.score:
            best = TermMatch(term=term, term_index=index, score=score)
    return best
