# macroview/utils/country_codes.py — country reference -> CountryIdentity
from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union
import logging
import re
import unicodedata

import pycountry

from macroview.models import CountryIdentity, PartialIdentity, Unresolved

logger = logging.getLogger("macroview")

Reference = Union[str, PartialIdentity, CountryIdentity, Unresolved, Mapping[str, Any]]

# Hand-curated alias table: ISO3 -> (display name, aliases...).
# The display name becomes CountryIdentity.canonical_name; every entry is
# matched both ways (any alias resolves to the same identity).
_ALIASES: Dict[str, Tuple[str, ...]] = {
    "USA": ("United States", "United States of America", "US", "U.S.", "U.S.A.", "America"),
    "GBR": ("United Kingdom", "UK", "U.K.", "Great Britain", "Britain",
            "United Kingdom of Great Britain and Northern Ireland"),
    "RUS": ("Russia", "Russian Federation"),
    "SYR": ("Syria", "Syrian Arab Republic"),
    "VNM": ("Vietnam", "Viet Nam"),
    "KOR": ("South Korea", "Republic of Korea", "Korea, Rep.", "Korea, Republic of", "Korea (South)"),
    "PRK": ("North Korea", "Democratic People's Republic of Korea", "Korea, Dem. People's Rep.",
            "Korea, Democratic People's Republic of", "Korea DPR", "Korea (North)"),
    "IRN": ("Iran", "Iran, Islamic Rep.", "Islamic Republic of Iran", "Persia"),
    "BOL": ("Bolivia", "Plurinational State of Bolivia", "Bolivia, Plurinational State of"),
    "VEN": ("Venezuela", "Venezuela, RB", "Bolivarian Republic of Venezuela"),
    "TZA": ("Tanzania", "United Republic of Tanzania", "Tanzania, United Republic of"),
    "MDA": ("Moldova", "Republic of Moldova", "Moldova, Republic of"),
    "PSE": ("Palestine", "State of Palestine", "West Bank and Gaza", "Palestinian Territories", "West Bank"),
    "LAO": ("Laos", "Lao PDR", "Lao People's Democratic Republic"),
    "BRN": ("Brunei", "Brunei Darussalam"),
    "MMR": ("Myanmar", "Burma"),
    "EGY": ("Egypt", "Egypt, Arab Rep.", "Arab Republic of Egypt"),
    "GMB": ("Gambia", "Gambia, The", "The Gambia"),
    "BHS": ("Bahamas", "Bahamas, The", "The Bahamas"),
    "YEM": ("Yemen", "Yemen, Rep."),
    "COG": ("Republic of the Congo", "Congo, Rep.", "Congo-Brazzaville", "Congo"),
    "COD": ("DR Congo", "Democratic Republic of the Congo", "Congo, Dem. Rep.",
            "Congo (Democratic Republic)", "Congo-Kinshasa", "DRC", "Dem. Rep. Congo"),
    "CIV": ("Ivory Coast", "Cote d'Ivoire"),
    "CZE": ("Czechia", "Czech Republic"),
    "TUR": ("Turkey", "Türkiye", "Turkiye"),
    "SWZ": ("Eswatini", "Swaziland"),
    "MKD": ("North Macedonia", "Macedonia"),
    "CPV": ("Cabo Verde", "Cape Verde"),
    "TLS": ("Timor-Leste", "East Timor"),
    "KGZ": ("Kyrgyzstan", "Kyrgyz Republic"),
    "SVK": ("Slovakia", "Slovak Republic"),
    "TWN": ("Taiwan",),
    "HKG": ("Hong Kong", "Hong Kong SAR, China"),
    "MAC": ("Macao", "Macau", "Macao SAR, China"),
    "ARE": ("United Arab Emirates", "UAE"),
    "FSM": ("Micronesia", "Micronesia, Fed. Sts."),
    "KNA": ("Saint Kitts and Nevis", "St. Kitts and Nevis"),
    "LCA": ("Saint Lucia", "St. Lucia"),
    "VCT": ("Saint Vincent and the Grenadines", "St. Vincent and the Grenadines"),
    "VAT": ("Vatican City", "Holy See"),
    # world-atlas / Natural Earth feature names
    "SOM": ("Somalia", "Somaliland"),
    "CYP": ("Cyprus", "Northern Cyprus", "N. Cyprus"),
    "SSD": ("South Sudan", "S. Sudan"),
    "GNQ": ("Equatorial Guinea", "Eq. Guinea"),
    "CAF": ("Central African Republic", "Central African Rep."),
    "BIH": ("Bosnia and Herzegovina", "Bosnia and Herz."),
    "DOM": ("Dominican Republic", "Dominican Rep."),
    "SLB": ("Solomon Islands", "Solomon Is."),
    "ATF": ("French Southern Territories", "French Southern and Antarctic Lands", "Fr. S. Antarctic Lands"),
}

# Entities the dashboard shows that ISO 3166-1 does not carry.
_EXTRA_ENTITIES: Tuple[Tuple[str, Optional[str], str, Tuple[str, ...]], ...] = (
    # (iso3, iso2, canonical name, aliases)
    ("WLD", None, "World", ("Global", "Whole World")),
    ("XKX", "XK", "Kosovo", ("Republic of Kosovo",)),
)

_FUNCTION_WORDS = re.compile(r"\b(the|of|and)\b")
_NON_LETTERS = re.compile(r"[^a-z]+")

# prefix / contains levels ignore queries shorter than these
_MIN_PREFIX = 3
_MIN_CONTAINS = 4

# words a longer reference may add around a known name ("Republic of Serbia")
_QUALIFIERS = frozenset({
    "republic", "kingdom", "state", "federal", "federation", "commonwealth",
    "principality", "sultanate", "islamic", "union", "grand", "duchy",
})


def name_tokens(text: Optional[str]) -> Tuple[str, ...]:
    """
    Word form of a country name, function words and punctuation dropped.

    "Dem. Rep. Congo" -> ("dem", "rep", "congo"), "Guinea-Bissau" -> ("guinea", "bissau").
    """
    t = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    t = t.lower().replace("&", " and ").replace("'", "")
    t = _FUNCTION_WORDS.sub(" ", t)
    return tuple(_NON_LETTERS.sub(" ", t).split())


def normalize_name(text: Optional[str]) -> str:
    """
    Canonical comparison form of a country name.

    "The Republic of Korea" -> "republickorea", "Côte d'Ivoire" -> "cotedivoire".
    """
    return "".join(name_tokens(text))


def _find_run(outer: Tuple[str, ...], inner: Tuple[str, ...]) -> int:
    """Index where `inner` occurs as consecutive whole words of `outer`, or -1."""
    n = len(inner)
    if n == 0 or n > len(outer):
        return -1
    for i in range(len(outer) - n + 1):
        if outer[i:i + n] == inner:
            return i
    return -1


def _reference_label(reference: Reference) -> str:
    if isinstance(reference, str):
        return reference
    if isinstance(reference, PartialIdentity):
        return reference.name or reference.iso3 or reference.iso2 or ""
    if isinstance(reference, Mapping):
        return str(reference.get("name") or reference.get("NAME") or reference.get("id") or "")
    return str(reference)


def _as_partial(reference: Any) -> Optional[PartialIdentity]:
    if isinstance(reference, PartialIdentity):
        return reference
    if isinstance(reference, Mapping):
        # a whole GeoJSON feature or just its properties
        if isinstance(reference.get("properties"), Mapping):
            return PartialIdentity.from_feature_properties(reference["properties"], reference.get("id"))
        return PartialIdentity.from_feature_properties(reference)
    return None


# -----------------------------------------------------------------------------
# reference table
# -----------------------------------------------------------------------------

def _pycountry_entities() -> Iterable[Tuple[str, Optional[str], str, Tuple[str, ...]]]:
    for c in pycountry.countries:
        iso3 = c.alpha_3
        official = tuple(
            n for n in (
                getattr(c, "name", None),
                getattr(c, "official_name", None),
                getattr(c, "common_name", None),
            ) if n
        )
        curated = _ALIASES.get(iso3, ())
        canonical = curated[0] if curated else (getattr(c, "common_name", None) or c.name)
        yield iso3, c.alpha_2, canonical, official


def build_reference_table() -> List[CountryIdentity]:
    out: List[CountryIdentity] = []
    for iso3, iso2, canonical, names in list(_pycountry_entities()) + list(_EXTRA_ENTITIES):
        aliases = frozenset(set(names) | set(_ALIASES.get(iso3, ())) | {canonical})
        out.append(CountryIdentity(canonical_name=canonical, iso2=iso2, iso3=iso3, aliases=aliases))
    return out


class CountryResolver:
    """
    Maps names, codes, aliases and map-feature properties onto CountryIdentity.

    Lookup precedence (first level with exactly one candidate wins):
      1) ISO3 / ISO2 code
      2) hand-curated alias table
      3) normalized exact name
      4) normalized prefix
      5) normalized contains
    A level with several candidates is ambiguous and resolution moves on;
    running out of levels yields Unresolved.
    """

    def __init__(
        self,
        identities: Optional[Iterable[CountryIdentity]] = None,
        aliases: Optional[Mapping[str, Tuple[str, ...]]] = None,
    ) -> None:
        alias_table = _ALIASES if aliases is None else aliases
        table = list(identities) if identities is not None else build_reference_table()

        self._by_iso3: Dict[str, CountryIdentity] = {}
        self._by_code: Dict[str, str] = {}
        self._alias_index: Dict[str, Set[str]] = {}
        self._name_index: Dict[str, Set[str]] = {}
        self._names: List[Tuple[str, Tuple[str, ...], str]] = []

        for ident in table:
            key = ident.iso3 or ident.iso2 or normalize_name(ident.canonical_name)
            self._by_iso3[key] = ident
            if ident.iso3:
                self._by_code[ident.iso3] = key
            if ident.iso2:
                self._by_code[ident.iso2] = key

            curated = {normalize_name(a) for a in alias_table.get(ident.iso3 or "", ())}
            for n in curated:
                if n:
                    self._alias_index.setdefault(n, set()).add(key)
            for name in ident.aliases:
                n = normalize_name(name)
                if not n:
                    continue
                if n not in curated:
                    self._name_index.setdefault(n, set()).add(key)
                self._names.append((n, name_tokens(name), key))

        logger.debug("country reference table loaded: %d identities", len(self._by_iso3))

    def __len__(self) -> int:
        return len(self._by_iso3)

    # ---- levels --------------------------------------------------------------

    def _by_codes(self, *codes: Optional[str]) -> Set[str]:
        hits: Set[str] = set()
        for code in codes:
            if not code:
                continue
            c = code.strip().upper()
            if len(c) in (2, 3) and c.isalpha() and c in self._by_code:
                hits.add(self._by_code[c])
        return hits

    def _name_levels(self, q: str, words: Tuple[str, ...]) -> Iterable[Tuple[str, Set[str]]]:
        yield "alias", set(self._alias_index.get(q, ()))
        yield "name", set(self._name_index.get(q, ()))
        if len(q) >= _MIN_PREFIX:
            yield "prefix", {k for n, _, k in self._names if n.startswith(q)}
        if len(q) < _MIN_CONTAINS:
            return
        # contains levels match whole words only, so "mali" never matches "somaliland"
        forward = {k for _, w, k in self._names if _find_run(w, words) >= 0}
        if forward:
            yield "contains", forward
            return
        # query is longer than the stored name ("Republic of Serbia"); the extra
        # words must be qualifiers, so "S. Sudan" is not taken for "Sudan"
        inner: List[Tuple[Tuple[str, ...], str]] = []
        for n, w, k in self._names:
            if len(n) < _MIN_CONTAINS or len(w) >= len(words):
                continue
            at = _find_run(words, w)
            if at < 0:
                continue
            extra = words[:at] + words[at + len(w):]
            if all(x in _QUALIFIERS for x in extra):
                inner.append((w, k))
        maximal = {k for w, k in inner if not any(w != v and _find_run(v, w) >= 0 for v, _ in inner)}
        yield "contains", maximal

    # ---- public --------------------------------------------------------------

    def resolve(self, reference: Reference) -> Union[CountryIdentity, Unresolved]:
        if isinstance(reference, (CountryIdentity, Unresolved)):
            return reference

        label = _reference_label(reference)
        partial = _as_partial(reference)
        if partial is not None:
            name = partial.name
            code_hits = self._by_codes(partial.iso3, partial.iso2)
        elif isinstance(reference, str):
            name = reference.strip()
            code_hits = self._by_codes(name) if len(name) in (2, 3) else set()
        else:
            return Unresolved(reference=label, reason="unsupported reference type")

        if len(code_hits) == 1:
            return self._by_iso3[next(iter(code_hits))]
        ambiguous = len(code_hits) > 1

        q = normalize_name(name)
        if q:
            for level, hits in self._name_levels(q, name_tokens(name)):
                if len(hits) == 1:
                    ident = self._by_iso3[next(iter(hits))]
                    if level in ("prefix", "contains"):
                        logger.debug("resolved %r by %s match -> %s", label, level, ident.canonical_name)
                    return ident
                if len(hits) > 1:
                    ambiguous = True

        return Unresolved(reference=label, reason="ambiguous" if ambiguous else "no match")


@lru_cache(maxsize=1)
def get_resolver() -> CountryResolver:
    """Process-wide resolver; the reference table is built once and never mutated."""
    return CountryResolver()


def resolve_country(reference: Reference) -> Union[CountryIdentity, Unresolved]:
    return get_resolver().resolve(reference)


def get_country_codes(country: str) -> Dict[str, Optional[str]]:
    """
    Return a dict with: name, iso_alpha_2, iso_alpha_3.
    Never raises; returns None codes when the reference is unresolved.
    """
    if not country:
        return {"name": None, "iso_alpha_2": None, "iso_alpha_3": None}
    ident = resolve_country(country)
    if isinstance(ident, Unresolved):
        return {"name": country, "iso_alpha_2": None, "iso_alpha_3": None}
    return {"name": ident.canonical_name, "iso_alpha_2": ident.iso2, "iso_alpha_3": ident.iso3}


__all__ = [
    "CountryResolver",
    "Reference",
    "build_reference_table",
    "get_country_codes",
    "get_resolver",
    "normalize_name",
    "resolve_country",
]
