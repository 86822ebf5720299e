"""
Format Disambiguator
====================

Picks the layout variant for a transcription whose shape is not declared.

Selection order:
1. A named hint bypasses selection entirely ("hint")
2. The variant yielding strictly the most rows wins ("yield")
3. On an exact tie among the leaders, the tied variant with the most
   header-phrase hits wins, if it is unique and non-zero ("header")
4. Otherwise the primary variant if it is among the leaders, else the
   first tied variant in registry order ("default")

The chosen variant, the method and every candidate's row count are always
reported; they are the first thing to look at for a misread document.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import UnknownLayoutError
from .layouts import LAYOUT_VARIANTS, PRIMARY_VARIANT, LayoutVariant, get_variant, variant_names
from .table_parser import ParseResult, TableFormatParser

logger = logging.getLogger(__name__)

AUTO = "auto"


@dataclass
class DisambiguationResult:
    """Chosen variant plus the evidence behind the choice."""
    variant: str
    method: str  # hint | yield | header | default
    parse_result: ParseResult
    candidate_yields: Dict[str, int] = field(default_factory=dict)
    header_hits: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'variant': self.variant,
            'method': self.method,
            'candidate_yields': dict(self.candidate_yields),
            'header_hits': dict(self.header_hits),
            'rows_skipped': self.parse_result.rows_skipped,
        }


class FormatDisambiguator:
    """Runs the parser under each known variant and picks the best fit."""

    def __init__(self, parser: Optional[TableFormatParser] = None,
                 variants: Sequence[LayoutVariant] = LAYOUT_VARIANTS,
                 primary: str = PRIMARY_VARIANT):
        self.parser = parser or TableFormatParser()
        self.variants = list(variants)
        self.primary = primary

    def resolve(self, text: str, hint: Optional[str] = AUTO) -> DisambiguationResult:
        """
        Parse text under the hinted variant, or select one automatically.

        Args:
            text: Transcribed text
            hint: Variant name, or "auto" / None for automatic selection

        Returns:
            DisambiguationResult

        Raises:
            UnknownLayoutError: If hint names no registered variant
        """
        if hint and hint != AUTO:
            variant = self._lookup(hint)
            parsed = self.parser.parse(text, variant)
            logger.info(f"Layout hint '{hint}' used: {parsed.row_count} rows")
            return DisambiguationResult(
                variant=variant.name,
                method="hint",
                parse_result=parsed,
                candidate_yields={variant.name: parsed.row_count},
            )

        results: Dict[str, ParseResult] = {
            variant.name: self.parser.parse(text, variant) for variant in self.variants
        }
        yields = {name: parsed.row_count for name, parsed in results.items()}

        best = max(yields.values()) if yields else 0
        leaders = [variant for variant in self.variants if yields[variant.name] == best]

        if len(leaders) == 1:
            chosen = leaders[0].name
            logger.info(f"Layout chosen by yield: {chosen} (yields={yields})")
            return DisambiguationResult(chosen, "yield", results[chosen], yields)

        hits = {variant.name: variant.count_header_hits(text) for variant in leaders}
        top_hits = max(hits.values())
        header_leaders = [name for name, count in hits.items() if count == top_hits]

        if top_hits > 0 and len(header_leaders) == 1:
            chosen = header_leaders[0]
            method = "header"
        else:
            leader_names = [variant.name for variant in leaders]
            chosen = self.primary if self.primary in leader_names else leader_names[0]
            method = "default"

        logger.info(f"Layout tie {[v.name for v in leaders]} broken by {method}: {chosen} (header hits={hits})")
        return DisambiguationResult(chosen, method, results[chosen], yields, hits)

    def _lookup(self, name: str) -> LayoutVariant:
        for variant in self.variants:
            if variant.name == name:
                return variant
        variant = get_variant(name)
        if variant is None:
            raise UnknownLayoutError(name, variant_names())
        return variant

    def known_variants(self) -> List[Dict[str, Any]]:
        return [variant.to_dict() for variant in self.variants]
