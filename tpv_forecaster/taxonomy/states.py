"""
State lookup table for merchant registration records.

Registration data spells the same state many ways ("SP", "Sao Paulo",
"São Paulo", "sao  paulo"). Rather than running successive text
replacements, every raw value is normalized (accents stripped, case folded,
whitespace collapsed) and looked up in ``STATE_LOOKUP``. Anything the table
does not know maps to ``BrazilianState.UNKNOWN``.

The table is versioned: bump ``STATE_LOOKUP_VERSION`` whenever a mapping is
added or changed so that segment assignments from different runs can be
traced to the table that produced them.

This module has NO imports from any other ``tpv_forecaster`` package.
"""

from __future__ import annotations

import math
import unicodedata
from enum import StrEnum

STATE_LOOKUP_VERSION = "2023.1"


class BrazilianState(StrEnum):
    """Federative units by two-letter code, plus an unknown sentinel."""

    AC = "AC"
    AL = "AL"
    AP = "AP"
    AM = "AM"
    BA = "BA"
    CE = "CE"
    DF = "DF"
    ES = "ES"
    GO = "GO"
    MA = "MA"
    MT = "MT"
    MS = "MS"
    MG = "MG"
    PA = "PA"
    PB = "PB"
    PR = "PR"
    PE = "PE"
    PI = "PI"
    RJ = "RJ"
    RN = "RN"
    RS = "RS"
    RO = "RO"
    RR = "RR"
    SC = "SC"
    SP = "SP"
    SE = "SE"
    TO = "TO"
    UNKNOWN = "UNKNOWN"


STATE_NAMES: dict[BrazilianState, str] = {
    BrazilianState.AC: "acre",
    BrazilianState.AL: "alagoas",
    BrazilianState.AP: "amapa",
    BrazilianState.AM: "amazonas",
    BrazilianState.BA: "bahia",
    BrazilianState.CE: "ceara",
    BrazilianState.DF: "distrito federal",
    BrazilianState.ES: "espirito santo",
    BrazilianState.GO: "goias",
    BrazilianState.MA: "maranhao",
    BrazilianState.MT: "mato grosso",
    BrazilianState.MS: "mato grosso do sul",
    BrazilianState.MG: "minas gerais",
    BrazilianState.PA: "para",
    BrazilianState.PB: "paraiba",
    BrazilianState.PR: "parana",
    BrazilianState.PE: "pernambuco",
    BrazilianState.PI: "piaui",
    BrazilianState.RJ: "rio de janeiro",
    BrazilianState.RN: "rio grande do norte",
    BrazilianState.RS: "rio grande do sul",
    BrazilianState.RO: "rondonia",
    BrazilianState.RR: "roraima",
    BrazilianState.SC: "santa catarina",
    BrazilianState.SP: "sao paulo",
    BrazilianState.SE: "sergipe",
    BrazilianState.TO: "tocantins",
}

# Spellings seen in registration exports that are neither a code nor the
# canonical name.
_EXTRA_VARIANTS: dict[str, BrazilianState] = {
    "brasilia": BrazilianState.DF,
    "df brasilia": BrazilianState.DF,
    "s paulo": BrazilianState.SP,
    "sampa": BrazilianState.SP,
    "rio": BrazilianState.RJ,
    "mt do sul": BrazilianState.MS,
    "rs rio grande do sul": BrazilianState.RS,
}


def _fold(value: str) -> str:
    """Strip accents, lowercase, and collapse internal whitespace."""
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = ascii_only.replace("-", " ").replace(".", " ").lower()
    return " ".join(cleaned.split())


def _build_lookup() -> dict[str, BrazilianState]:
    lookup: dict[str, BrazilianState] = {}
    for state, name in STATE_NAMES.items():
        lookup[state.value.lower()] = state
        lookup[name] = state
    lookup.update(_EXTRA_VARIANTS)
    return lookup


STATE_LOOKUP: dict[str, BrazilianState] = _build_lookup()


def normalize_state(value: object) -> str:
    """Map a raw state value to its two-letter code.

    Args:
        value: Raw value from the registration table (any type; ``None`` and
            NaN are accepted).

    Returns:
        The ``BrazilianState`` code string, or ``"UNKNOWN"`` for unmapped,
        empty or missing values.
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return BrazilianState.UNKNOWN.value
    folded = _fold(str(value))
    return STATE_LOOKUP.get(folded, BrazilianState.UNKNOWN).value
