"""Closed vocabularies for categories, quotas, states, and cities.

Keys are uppercase synonyms as they appear in counselling exports; values
are the canonical codes stored in staging and canonical tables.
"""

from __future__ import annotations

# Reservation / merit categories
CATEGORY_CODES: dict[str, str] = {
    "GM": "GM",
    "GMP": "GMP",
    "GMPH": "GMPH",
    "2AG": "2AG",
    "MU": "MU",
    "OPN": "OPN",
    "SC": "SC",
    "ST": "ST",
    "OBC": "OBC",
    "EWS": "EWS",
    "PWD": "PWD",
    "GENERAL": "GM",
    "GENERAL MERIT": "GM",
    "UR": "GM",
    "UNRESERVED": "GM",
    "SCHEDULED CASTE": "SC",
    "SCHEDULED TRIBE": "ST",
    "OTHER BACKWARD CLASS": "OBC",
    "OTHER BACKWARD CLASSES": "OBC",
    "BC": "OBC",
    "ECONOMICALLY WEAKER SECTION": "EWS",
    "ECONOMICALLY WEAKER SECTIONS": "EWS",
    "PH": "PWD",
    "PWBD": "PWD",
    "PERSON WITH DISABILITY": "PWD",
    "PERSONS WITH DISABILITY": "PWD",
}

# Seat allocation channels
QUOTA_CODES: dict[str, str] = {
    "AIQ": "AIQ",
    "ALL INDIA": "AIQ",
    "ALL INDIA QUOTA": "AIQ",
    "STATE": "STATE",
    "STATE QUOTA": "STATE",
    "KEA": "STATE",
    "GOVERNMENT": "STATE",
    "GOVT": "STATE",
    "CENTRAL": "CENTRAL",
    "CENTRAL POOL": "CENTRAL",
    "CENTRAL UNIVERSITY": "CENTRAL",
    "DEEMED": "DEEMED",
    "DEEMED UNIVERSITY": "DEEMED",
    "UNIVERSITY": "UNIVERSITY",
    "MINORITY": "MINORITY",
    "NRI": "NRI",
    "MANAGEMENT": "MANAGEMENT",
    "PAID": "MANAGEMENT",
    "PRIVATE": "MANAGEMENT",
}

STATE_ABBREVIATIONS: dict[str, str] = {
    "AP": "ANDHRA PRADESH",
    "AS": "ASSAM",
    "BR": "BIHAR",
    "CG": "CHHATTISGARH",
    "DL": "DELHI",
    "GA": "GOA",
    "GJ": "GUJARAT",
    "HR": "HARYANA",
    "HP": "HIMACHAL PRADESH",
    "JH": "JHARKHAND",
    "JK": "JAMMU AND KASHMIR",
    "KA": "KARNATAKA",
    "KL": "KERALA",
    "MP": "MADHYA PRADESH",
    "MH": "MAHARASHTRA",
    "OD": "ODISHA",
    "PB": "PUNJAB",
    "PY": "PUDUCHERRY",
    "RJ": "RAJASTHAN",
    "TN": "TAMIL NADU",
    "TS": "TELANGANA",
    "UP": "UTTAR PRADESH",
    "UK": "UTTARAKHAND",
    "WB": "WEST BENGAL",
}

# City → state, used when seed data or input rows omit the state
CITY_STATE: dict[str, str] = {
    "AHMEDABAD": "GUJARAT",
    "VADODARA": "GUJARAT",
    "SURAT": "GUJARAT",
    "RAJKOT": "GUJARAT",
    "BANGALORE": "KARNATAKA",
    "BENGALURU": "KARNATAKA",
    "MYSORE": "KARNATAKA",
    "MYSURU": "KARNATAKA",
    "MANGALORE": "KARNATAKA",
    "MANGALURU": "KARNATAKA",
    "HUBLI": "KARNATAKA",
    "BELAGAVI": "KARNATAKA",
    "DAVANGERE": "KARNATAKA",
    "CHENNAI": "TAMIL NADU",
    "MADURAI": "TAMIL NADU",
    "COIMBATORE": "TAMIL NADU",
    "DELHI": "DELHI",
    "NEW DELHI": "DELHI",
    "MUMBAI": "MAHARASHTRA",
    "PUNE": "MAHARASHTRA",
    "NAGPUR": "MAHARASHTRA",
    "KOLKATA": "WEST BENGAL",
    "HYDERABAD": "TELANGANA",
    "JAIPUR": "RAJASTHAN",
    "LUCKNOW": "UTTAR PRADESH",
    "CHANDIGARH": "CHANDIGARH",
    "THIRUVANANTHAPURAM": "KERALA",
    "KOCHI": "KERALA",
    "BHOPAL": "MADHYA PRADESH",
    "PATNA": "BIHAR",
}

# Regional renames and common misspellings, applied in both directions
REGIONAL_NAME_PAIRS: tuple[tuple[str, str], ...] = (
    ("BANGALORE", "BENGALURU"),
    ("BOMBAY", "MUMBAI"),
    ("MADRAS", "CHENNAI"),
    ("CALCUTTA", "KOLKATA"),
    ("MYSORE", "MYSURU"),
    ("MANGALORE", "MANGALURU"),
    ("BELGAUM", "BELAGAVI"),
    ("GULBARGA", "KALABURAGI"),
    ("HUBLI", "HUBBALLI"),
    ("SHIMOGA", "SHIVAMOGGA"),
    ("TUMKUR", "TUMAKURU"),
    ("BELLARY", "BALLARI"),
    ("BIJAPUR", "VIJAYAPURA"),
    ("TRIVANDRUM", "THIRUVANANTHAPURAM"),
    ("COCHIN", "KOCHI"),
    ("POONA", "PUNE"),
    ("BARODA", "VADODARA"),
    ("GURGAON", "GURUGRAM"),
    ("PONDICHERRY", "PUDUCHERRY"),
    ("ORISSA", "ODISHA"),
    ("AHMADABAD", "AHMEDABAD"),
    ("DAVANAGERE", "DAVANGERE"),
)


def lookup_category(value: str) -> str:
    """Canonical category code, or the uppercased input when unknown."""
    upper = " ".join(value.upper().split())
    return CATEGORY_CODES.get(upper, upper)


def lookup_state(value: str | None) -> str:
    """Expand a state abbreviation; unknown values pass through uppercased."""
    if not value:
        return ""
    upper = " ".join(value.upper().split())
    return STATE_ABBREVIATIONS.get(upper, upper)
