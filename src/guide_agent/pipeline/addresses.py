"""Address normalisation, address-shape detection and geodesic distance."""

from __future__ import annotations

import math
import re

from guide_agent.types import GeoPoint

EARTH_RADIUS_METERS = 6_371_000.0

_SUFFIXES = {
    "street": "st",
    "avenue": "ave",
    "av": "ave",
    "road": "rd",
    "boulevard": "blvd",
    "lane": "ln",
    "drive": "dr",
    "court": "ct",
    "place": "pl",
    "terrace": "ter",
    "parkway": "pkwy",
    "highway": "hwy",
    "square": "sq",
    "plaza": "plz",
    "circle": "cir",
    "alley": "aly",
    "crescent": "cres",
}
_DIRECTIONS = {
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
}

_SUFFIX_PATTERN = (
    r"(?:Street|St|Avenue|Ave|Av|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|"
    r"Place|Pl|Way|Terrace|Ter|Parkway|Pkwy|Highway|Hwy|Square|Sq|Plaza|Plz|"
    r"Circle|Cir|Alley|Aly|Row|Crescent|Cres)"
)
# Words that read as prose rather than part of a street name, so that
# "2 blocks down the street" is not taken for an address.
_PROSE_WORDS = (
    r"(?:the|a|an|of|and|or|to|from|for|with|is|are|at|on|in|by|near|off|past|up|down|"
    r"around|across|along|about|just|only|best|great|good|top|nice|favou?rite|other|"
    r"more|new|open|blocks?|minutes?|mins?|miles?|meters?|metres?|feet|ft|km|steps?|"
    r"doors?|stops?|times?|people|stars?)"
)
_NAME_TOKEN = r"(?:\d+(?:st|nd|rd|th)\b|(?!" + _PROSE_WORDS + r"\b)[a-z][\w'\-]*\.?)"
# A house number followed by one to four name or ordinal tokens and a street
# suffix, e.g. "117 W 72nd St" or "165 amsterdam avenue". Case is ignored.
ADDRESS_PATTERN = re.compile(
    r"\b\d{1,5}[a-z]?"
    r"(?:\s+Broadway\b|(?:\s+" + _NAME_TOKEN + r"){1,4}?"
    r"\s+" + _SUFFIX_PATTERN + r"\b)\.?",
    re.IGNORECASE,
)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    cleaned = _PUNCTUATION.sub(" ", text.lower().replace("'", ""))
    return _WHITESPACE.sub(" ", cleaned).strip()


def normalize_address(address: str) -> str:
    """Lowercase, strip punctuation and abbreviate suffixes and directions."""
    tokens = normalize_text(address).split(" ")
    normalized = [_SUFFIXES.get(token, _DIRECTIONS.get(token, token)) for token in tokens]
    return " ".join(token for token in normalized if token)


def street_line(address: str) -> str:
    """Return the part of a formatted address before the first comma."""
    return address.split(",", 1)[0].strip()


def find_address_mentions(text: str) -> list[str]:
    mentions: list[str] = []
    for match in ADDRESS_PATTERN.finditer(text):
        mention = match.group(0).rstrip(".").strip()
        if mention not in mentions:
            mentions.append(mention)
    return mentions


def haversine_meters(origin: GeoPoint, target: GeoPoint) -> float:
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(target.longitude - origin.longitude)
    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
