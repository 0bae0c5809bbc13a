"""
Name and location normalization for claim searches.

The claim-search form matches on exact spelling, so names are reduced to plain
ASCII letters before use and a short list of common nicknames is expanded to
the formal name the state records are usually filed under.
"""

import re
import unicodedata
from typing import Dict, List, Optional

US_STATES: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "DC": "District of Columbia", "FL": "Florida", "GA": "Georgia", "HI": "Hawaii",
    "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine",
    "MD": "Maryland", "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota",
    "MS": "Mississippi", "MO": "Missouri", "MT": "Montana", "NE": "Nebraska",
    "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico",
    "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island",
    "SC": "South Carolina", "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas",
    "UT": "Utah", "VT": "Vermont", "VA": "Virginia", "WA": "Washington",
    "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

# Formal name the records are filed under, mapped to its common nicknames.
FORMAL_NAMES: Dict[str, List[str]] = {
    "benjamin": ["ben", "benny", "benji"],
    "william": ["bill", "billy", "will", "willy", "liam"],
    "robert": ["bob", "bobby", "rob", "robbie"],
    "richard": ["dick", "rick", "ricky", "rich"],
    "james": ["jim", "jimmy", "jamie"],
    "joseph": ["joe", "joey"],
    "michael": ["mike", "mikey", "mick"],
    "thomas": ["tom", "tommy"],
    "anthony": ["tony"],
    "christopher": ["chris", "kit"],
    "daniel": ["dan", "danny"],
    "david": ["dave", "davey"],
    "edward": ["ed", "eddie", "ted"],
    "matthew": ["matt", "matty"],
    "nicholas": ["nick", "nicky"],
    "steven": ["steve", "stevie"],
    "alexander": ["alex", "al"],
    "andrew": ["andy", "drew"],
    "gregory": ["greg"],
    "jonathan": ["jon", "johnny"],
    "lawrence": ["larry"],
    "samuel": ["sam", "sammy"],
    "katherine": ["kate", "katie", "kathy", "cathy"],
    "elizabeth": ["liz", "beth", "betty", "lizzie"],
    "jennifer": ["jen", "jenny"],
    "susan": ["sue", "susie"],
    "patricia": ["patty", "pat"],
    "margaret": ["meg", "maggie", "peggy"],
    "rebecca": ["becky", "becca"],
    "victoria": ["vicky", "tori"],
}

_ALIASES: Dict[str, str] = {}
for _formal, _nicknames in FORMAL_NAMES.items():
    _ALIASES[_formal] = _formal
    for _name in _nicknames:
        _ALIASES[_name] = _formal


def strip_diacritics(value: str) -> str:
    """Fold accented characters to their closest ASCII letters."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def clean_name(value: Optional[str]) -> str:
    """Strip diacritics and anything that is not a letter, apostrophe, hyphen or space."""
    if not value:
        return ""
    folded = strip_diacritics(value)
    folded = re.sub(r"[^A-Za-z'\- ]+", " ", folded)
    return re.sub(r"\s+", " ", folded).strip()


def expand_nickname(name: str) -> str:
    """Return the formal name for a known nickname, in title case."""
    alias = _ALIASES.get(name.lower())
    if not alias:
        return name
    return alias.capitalize()


def normalize_first_name(value: Optional[str]) -> str:
    return expand_nickname(clean_name(value))


def normalize_last_name(value: Optional[str]) -> str:
    return clean_name(value)


def full_state_name(state: Optional[str]) -> str:
    """
    Expand a two-letter state code to the name shown in the form's dropdown.

    Values that are already full names (or unknown) are returned trimmed.
    """
    if not state:
        return ""
    state = state.strip()
    return US_STATES.get(state.upper(), state)
