"""Lookup variations for canonical college and program names.

Variations are used only for matching; they are never persisted as
entities. Every function here is pure and works on uppercase text.
"""

from __future__ import annotations

import re

from cutoff_ingest.parsing.vocab import REGIONAL_NAME_PAIRS

_APOSTROPHES = re.compile(r"['’`]")
_PUNCT = re.compile(r"[^A-Z0-9\s]")
_SPACES = re.compile(r"\s+")
_DOTTED_INITIALS = re.compile(r"\b((?:[A-Z]\.\s*){2,})")
_MD_WRAPPED = re.compile(r"\bM[DS]S?\s*\(([^)]+)\)")

# Words that do not contribute a letter to an acronym
_STOPWORDS = frozenset({"OF", "AND", "THE", "FOR", "IN", "&", "AT"})
_GENERIC_WORDS = ("COLLEGE", "INSTITUTE", "HOSPITAL")

SUFFIX_ABBREVIATIONS: dict[str, tuple[str, ...]] = {
    "INSTITUTE": ("INST", "INSTT"),
    "COLLEGE": ("COLL", "COL"),
    "UNIVERSITY": ("UNIV",),
    "HOSPITAL": ("HOSP",),
    "GOVERNMENT": ("GOVT",),
    "MEDICAL": ("MED",),
    "SCIENCES": ("SCI",),
}

PREFIX_VARIANTS: dict[str, tuple[str, ...]] = {
    "DR.": ("DR", "DOCTOR"),
    "DR": ("DR.", "DOCTOR"),
    "SRI.": ("SRI", "SHRI"),
    "SRI": ("SHRI",),
    "SHRI": ("SRI",),
    "ST.": ("ST", "SAINT"),
}

PROGRAM_SYNONYMS: tuple[tuple[str, str], ...] = (
    ("RADIODIAGNOSIS", "RADIOLOGY"),
    ("RADIODIAGNOSIS", "DIAGNOSTIC RADIOLOGY"),
    ("RADIODIAGNOSIS", "RADIO-DIAGNOSIS"),
    ("GENERAL MEDICINE", "INTERNAL MEDICINE"),
    ("GENERAL MEDICINE", "MEDICINE"),
    ("PAEDIATRICS", "PEDIATRICS"),
    ("PAEDIATRIC", "PEDIATRIC"),
    ("ORTHOPAEDICS", "ORTHOPEDICS"),
    ("ANAESTHESIOLOGY", "ANESTHESIOLOGY"),
    ("ANAESTHESIA", "ANESTHESIA"),
    ("GYNAECOLOGY", "GYNECOLOGY"),
    ("OBSTETRICS AND GYNAECOLOGY", "OBG"),
    ("OTORHINOLARYNGOLOGY", "ENT"),
    ("DERMATOLOGY VENEREOLOGY AND LEPROSY", "DERMATOLOGY"),
    ("RESPIRATORY MEDICINE", "PULMONARY MEDICINE"),
    ("CONSERVATIVE DENTISTRY AND ENDODONTICS", "CONSERVATIVE DENTISTRY"),
    ("CONSERVATIVE DENTISTRY AND ENDODONTICS", "ENDODONTICS"),
    ("ORAL AND MAXILLOFACIAL SURGERY", "ORAL SURGERY"),
    ("PROSTHODONTICS AND CROWN AND BRIDGE", "PROSTHODONTICS"),
    ("PROSTHODONTICS", "CROWN AND BRIDGE"),
    ("PAEDIATRIC AND PREVENTIVE DENTISTRY", "PEDODONTICS"),
    ("ORTHODONTICS AND DENTOFACIAL ORTHOPAEDICS", "ORTHODONTICS"),
    ("PERIODONTOLOGY", "PERIODONTICS"),
)


def match_key(text: str | None) -> str:
    """Uppercase, apostrophes dropped, other punctuation → space, whitespace collapsed.

    Apostrophes are dropped so JOHN'S keys the same as the normalizer's JOHNS.
    """
    if not text:
        return ""
    text = _APOSTROPHES.sub("", text.upper())
    return _SPACES.sub(" ", _PUNCT.sub(" ", text)).strip()


def _swap_word(text: str, old: str, new: str) -> str:
    return re.sub(rf"(?<![A-Z0-9]){re.escape(old)}(?![A-Z0-9])", new, text)


def _bidirectional(text: str, pairs: tuple[tuple[str, str], ...]) -> set[str]:
    out: set[str] = set()
    for left, right in pairs:
        for old, new in ((left, right), (right, left)):
            swapped = _swap_word(text, old, new)
            if swapped != text:
                out.add(swapped)
    return out


def acronym_forms(name: str) -> set[str]:
    """B.M.C. / B M C / BMC for a multi-word name."""
    words = [w for w in match_key(name).split() if w not in _STOPWORDS]
    if len(words) < 2:
        return set()
    letters = [w[0] for w in words]
    return {".".join(letters) + ".", " ".join(letters), "".join(letters)}


def initials_forms(name: str) -> set[str]:
    """Expand dotted initials: "A.J. INSTITUTE" → "A J INSTITUTE", "AJ INSTITUTE"."""
    match = _DOTTED_INITIALS.search(name)
    if not match:
        return set()
    letters = re.findall(r"[A-Z]", match.group(1))
    head, tail = name[: match.start()], name[match.end():].lstrip()
    out = set()
    for joined in (" ".join(letters), "".join(letters), ".".join(letters) + "."):
        out.add(_SPACES.sub(" ", f"{head}{joined} {tail}").strip())
    out.discard(name)
    return out


def abbreviation_forms(name: str) -> set[str]:
    """One abbreviation at a time, plus every abbreviation applied together."""
    out: set[str] = set()
    all_short = name
    for word, shorts in SUFFIX_ABBREVIATIONS.items():
        if not re.search(rf"\b{word}\b", name):
            continue
        for short in shorts:
            out.add(_swap_word(name, word, short))
        all_short = _swap_word(all_short, word, shorts[0])
    if all_short != name:
        out.add(all_short)
    return out


def prefix_forms(name: str) -> set[str]:
    out: set[str] = set()
    first, _, rest = name.partition(" ")
    for variant in PREFIX_VARIANTS.get(first, ()):
        out.add(f"{variant} {rest}".strip())
    return out


def regional_forms(name: str) -> set[str]:
    """Swap every known regional rename in both directions."""
    return _bidirectional(name, REGIONAL_NAME_PAIRS)


def college_variations(name: str) -> frozenset[str]:
    """All lookup forms of a canonical college name (excluding the name itself)."""
    base = " ".join(name.upper().split())
    main = base.split(",")[0].strip()
    seeds = {base, main}

    generic_dropped = main
    for word in _GENERIC_WORDS:
        generic_dropped = _swap_word(generic_dropped, word, "")
    generic_dropped = " ".join(generic_dropped.split())
    if generic_dropped and len(generic_dropped.split()) >= 2:
        seeds.add(generic_dropped)

    out: set[str] = set(seeds)
    for seed in seeds:
        out |= initials_forms(seed)
        out |= abbreviation_forms(seed)
        out |= prefix_forms(seed)
        out |= regional_forms(seed)
    out |= acronym_forms(main)
    out.discard(base)
    out.discard("")
    return frozenset(out)


def program_variations(name: str) -> frozenset[str]:
    """All lookup forms of a canonical program name (excluding the name itself)."""
    base = " ".join(name.upper().split())
    out: set[str] = set()

    wrapped = _MD_WRAPPED.search(base)
    if wrapped:
        inner = wrapped.group(1).strip()
        out.add(inner)
        out.add(_MD_WRAPPED.sub(lambda m: f"{m.group(0).split('(')[0].strip()} {m.group(1).strip()}", base))

    for seed in {base, *out}:
        out |= _bidirectional(seed, PROGRAM_SYNONYMS)
    for form in list(out | {base}):
        if " & " in form:
            out.add(form.replace(" & ", " AND "))
        elif " AND " in form:
            out.add(form.replace(" AND ", " & "))
    out.discard(base)
    out.discard("")
    return frozenset(out)
