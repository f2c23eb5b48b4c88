"""Built-in correction rules seeded into an empty rule table.

Patterns run against pre-cleaned (uppercased, whitespace-collapsed) text.
Replacements use Python group syntax (`\\g<1>`).
"""

from __future__ import annotations

from typing import Any

from cutoff_ingest.models.enums import CorrectionCategory as Cat
from cutoff_ingest.models.enums import CorrectionErrorType as Err
from cutoff_ingest.models.enums import RulePriority as P


def _rule(
    category: Cat,
    error_type: Err,
    priority: P,
    pattern: str,
    correction: str,
    regex_pattern: str,
    replacement: str,
    description: str,
    flags: str = "",
    examples: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "category": category,
        "error_type": error_type,
        "priority": priority,
        "pattern": pattern,
        "correction": correction,
        "regex_pattern": regex_pattern,
        "replacement": replacement,
        "description": description,
        "flags": flags,
        "examples": examples,
    }


DEFAULT_RULES: list[dict[str, Any]] = [
    # ── College names ────────────────────────────────────────────────
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.HIGH, "PGIMER,,,", "PGIMER",
          r"^PGIMER,+$", "PGIMER", "Trailing commas after PGIMER"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.HIGH, "MDAL", "MEDICAL",
          r"\bMDAL\b", "MEDICAL", "Dropped letters in MEDICAL",
          examples=["B.J. MDAL COLLEGE"]),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.HIGH, "CANNAUGHT", "CONNAUGHT",
          r"\bCANNAUGHT\b", "CONNAUGHT", "Misread vowel in CONNAUGHT PLACE"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.HIGH, "AHMDAD", "AHMEDABAD",
          r"\bAHMDAD\b", "AHMEDABAD", "Dropped letters in AHMEDABAD"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.MEDIUM, "B J MEDICAL", "B.J. MEDICAL",
          r"\bB\.?\s?J\.?\s+MEDICAL\b", "B.J. MEDICAL", "Initials of B.J. MEDICAL COLLEGE"),
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.MEDIUM, "DR RML", "DR. RML",
          r"\bDR\.?\s*RML\b", "DR. RML", "Spacing and dot in DR. RML"),
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.MEDIUM, "RML HOSPITAL,", "RML HOSPITAL",
          r"\bRML HOSPITAL,+", "RML HOSPITAL", "Stray commas after RML HOSPITAL"),
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.MEDIUM, "ABVIMS,", "ABVIMS",
          r"\bABVIMS,+", "ABVIMS", "Stray commas after ABVIMS"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.MEDIUM, "BABA KHARAK", "BABA KHARAK SINGH",
          r"\bBABA KHARAK\b(?!\s+SINGH)", "BABA KHARAK SINGH", "Truncated BABA KHARAK SINGH"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.MEDIUM, "SAWAI MAN", "SAWAI MAN SINGH",
          r"\bSAWAI MAN\b(?!\s+SINGH)", "SAWAI MAN SINGH", "Truncated SAWAI MAN SINGH"),
    _rule(Cat.COLLEGE_NAME, Err.OCR_ERROR, P.MEDIUM, "VARDHMAN", "VARDHMAN MAHAVIR",
          r"\bVARDHMAN\b(?!\s+MAHAVIR)", "VARDHMAN MAHAVIR", "Truncated VARDHMAN MAHAVIR"),
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.LOW, "NAME,,", "NAME",
          r"\s*,+\s*$", "", "Trailing commas at end of name"),
    _rule(Cat.COLLEGE_NAME, Err.FORMAT_ERROR, P.LOW, " ,", ",",
          r"\s+,", ",", "Space before comma"),
    # ── Program names ────────────────────────────────────────────────
    _rule(Cat.PROGRAM_NAME, Err.OCR_DUPLICATION, P.CRITICAL, "RADIORADIO", "RADIO",
          r"([A-Z]{4,})\1+", r"\g<1>", "Collapse OCR-duplicated runs",
          examples=["RADIORADIODIAGNOSISRADIODIAGNOSIS"]),
    _rule(Cat.PROGRAM_NAME, Err.OCR_ERROR, P.HIGH, "MDINE", "MEDICINE",
          r"\bMDINE\b", "MEDICINE", "Dropped letters in MEDICINE"),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.HIGH, "RADIO-DIAGNOSIS", "RADIODIAGNOSIS",
          r"\bRADIO[-\s]+DIAGNOSIS\b", "RADIODIAGNOSIS", "Split RADIODIAGNOSIS"),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.HIGH, "OBST AND GYNAE", "OBSTETRICS AND GYNAECOLOGY",
          r"\bOBST\.?\s+AND\s+GYNAE\b", "OBSTETRICS AND GYNAECOLOGY", "Abbreviated OBG"),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.HIGH, "MD(X)", "X",
          r"\bM[DS]\s*\(([^)]+)\)", r"\g<1>", "Unwrap MD(...) / MS(...) specialty",
          examples=["MD(GENERAL MEDICINE)", "MS(GENERAL SURGERY)"]),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.MEDIUM, "M.D.", "MD",
          r"\bM\.D\b\.?|\bMD\.", "MD", "Dotted MD degree"),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.MEDIUM, "M.S.", "MS",
          r"\bM\.S\b\.?|\bMS\.", "MS", "Dotted MS degree"),
    _rule(Cat.PROGRAM_NAME, Err.FORMAT_ERROR, P.LOW, "diploma", "DIPLOMA",
          r"^diploma$", "DIPLOMA", "Bare diploma", flags="i"),
    # ── Locations ────────────────────────────────────────────────────
    _rule(Cat.LOCATION, Err.FORMAT_ERROR, P.HIGH, "DELHI (NCT)", "DELHI",
          r"\bDELHI\s*\([^)]+\)", "DELHI", "Parenthesised Delhi qualifier"),
    _rule(Cat.LOCATION, Err.FORMAT_ERROR, P.HIGH, "CHENNAI-600003", "CHENNAI",
          r"\b([A-Z]+)-\d+\b", r"\g<1>", "Postal code glued to city"),
    _rule(Cat.LOCATION, Err.FORMAT_ERROR, P.MEDIUM, "TAMIL NADU,", "TAMIL NADU",
          r"\bTAMIL NADU,+", "TAMIL NADU", "Stray commas after TAMIL NADU"),
    _rule(Cat.LOCATION, Err.FORMAT_ERROR, P.MEDIUM, "RAJASTHAN,", "RAJASTHAN",
          r"\bRAJASTHAN,+", "RAJASTHAN", "Stray commas after RAJASTHAN"),
    _rule(Cat.LOCATION, Err.FORMAT_ERROR, P.MEDIUM, "GUJARAT,INDIA", "GUJARAT",
          r"\bGUJARAT,\s*INDIA\b,*", "GUJARAT", "Country suffix after GUJARAT"),
    # ── Quotas ───────────────────────────────────────────────────────
    _rule(Cat.QUOTA, Err.FORMAT_ERROR, P.MEDIUM, "aiq", "AIQ",
          r"^aiq\s*$", "AIQ", "All India quota code", flags="i"),
    # ── Categories ───────────────────────────────────────────────────
    _rule(Cat.CATEGORY, Err.FORMAT_ERROR, P.MEDIUM, "open", "OPEN",
          r"^open\s*$", "OPEN", "Open category", flags="i"),
    _rule(Cat.CATEGORY, Err.FORMAT_ERROR, P.MEDIUM, "sc", "SC",
          r"^sc\s*$", "SC", "Scheduled caste", flags="i"),
    _rule(Cat.CATEGORY, Err.FORMAT_ERROR, P.MEDIUM, "st", "ST",
          r"^st\s*$", "ST", "Scheduled tribe", flags="i"),
    _rule(Cat.CATEGORY, Err.FORMAT_ERROR, P.MEDIUM, "obc", "OBC",
          r"^obc\s*$", "OBC", "Other backward class", flags="i"),
    _rule(Cat.CATEGORY, Err.FORMAT_ERROR, P.MEDIUM, "ews", "EWS",
          r"^ews\s*$", "EWS", "Economically weaker section", flags="i"),
]
