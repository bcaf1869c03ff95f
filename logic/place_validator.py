# logic/place_validator.py

"""
Place name validation for the word-chain game.

A name is accepted when it is a known place, starts with the last letter of
the previous place (when there is one), and has not been used yet in the
session. Rejections that carry a required letter come with a few hints.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
DEFAULT_HINT_LIMIT = 5
DEFAULT_SEARCH_LIMIT = 8

_NAME_RE = re.compile(r"^[a-zA-ZÀ-ÿ\s\-'.]+$")
_ALPHA_RE = re.compile(r"[a-z]", re.IGNORECASE)


class Place(BaseModel):
    name: str
    region: Optional[str] = None
    lat: float = 0.0
    lng: float = 0.0


class PlaceValidation(BaseModel):
    valid: bool
    place: Optional[Place] = None
    required_letter: Optional[str] = None
    error: Optional[str] = None
    hints: List[str] = []


# (name, region, lat, lng)
DEFAULT_PLACES: Tuple[Tuple[str, str, float, float], ...] = (
    ("Amsterdam", "Netherlands", 52.3676, 4.9041),
    ("Athens", "Greece", 37.9838, 23.7275),
    ("Auckland", "New Zealand", -36.8485, 174.7633),
    ("Bangkok", "Thailand", 13.7563, 100.5018),
    ("Barcelona", "Spain", 41.3874, 2.1686),
    ("Berlin", "Germany", 52.5200, 13.4050),
    ("Bogotá", "Colombia", 4.7110, -74.0721),
    ("Cairo", "Egypt", 30.0444, 31.2357),
    ("Cape Town", "South Africa", -33.9249, 18.4241),
    ("Chicago", "United States", 41.8781, -87.6298),
    ("Dakar", "Senegal", 14.7167, -17.4677),
    ("Delhi", "India", 28.7041, 77.1025),
    ("Dublin", "Ireland", 53.3498, -6.2603),
    ("Edinburgh", "United Kingdom", 55.9533, -3.1883),
    ("Florence", "Italy", 43.7696, 11.2558),
    ("Hanoi", "Vietnam", 21.0278, 105.8342),
    ("Havana", "Cuba", 23.1136, -82.3666),
    ("Helsinki", "Finland", 60.1699, 24.9384),
    ("Istanbul", "Turkey", 41.0082, 28.9784),
    ("Jakarta", "Indonesia", -6.2088, 106.8456),
    ("Johannesburg", "South Africa", -26.2041, 28.0473),
    ("Kathmandu", "Nepal", 27.7172, 85.3240),
    ("Kyoto", "Japan", 35.0116, 135.7681),
    ("Lagos", "Nigeria", 6.5244, 3.3792),
    ("Lima", "Peru", -12.0464, -77.0428),
    ("Lisbon", "Portugal", 38.7223, -9.1393),
    ("London", "United Kingdom", 51.5074, -0.1278),
    ("Madrid", "Spain", 40.4168, -3.7038),
    ("Manila", "Philippines", 14.5995, 120.9842),
    ("Marrakesh", "Morocco", 31.6295, -7.9811),
    ("Melbourne", "Australia", -37.8136, 144.9631),
    ("Mexico City", "Mexico", 19.4326, -99.1332),
    ("Montreal", "Canada", 45.5017, -73.5673),
    ("Moscow", "Russia", 55.7558, 37.6173),
    ("Mumbai", "India", 19.0760, 72.8777),
    ("Nairobi", "Kenya", -1.2921, 36.8219),
    ("New York", "United States", 40.7128, -74.0060),
    ("Naples", "Italy", 40.8518, 14.2681),
    ("Oslo", "Norway", 59.9139, 10.7522),
    ("Osaka", "Japan", 34.6937, 135.5023),
    ("Paris", "France", 48.8566, 2.3522),
    ("Prague", "Czech Republic", 50.0755, 14.4378),
    ("Quito", "Ecuador", -0.1807, -78.4678),
    ("Reykjavik", "Iceland", 64.1466, -21.9426),
    ("Rio de Janeiro", "Brazil", -22.9068, -43.1729),
    ("Rome", "Italy", 41.9028, 12.4964),
    ("Santiago", "Chile", -33.4489, -70.6693),
    ("Seoul", "South Korea", 37.5665, 126.9780),
    ("Shanghai", "China", 31.2304, 121.4737),
    ("Singapore", "Singapore", 1.3521, 103.8198),
    ("Stockholm", "Sweden", 59.3293, 18.0686),
    ("Sydney", "Australia", -33.8688, 151.2093),
    ("Tallinn", "Estonia", 59.4370, 24.7536),
    ("Tokyo", "Japan", 35.6762, 139.6503),
    ("Toronto", "Canada", 43.6532, -79.3832),
    ("Tunis", "Tunisia", 36.8065, 10.1815),
    ("Ulaanbaatar", "Mongolia", 47.8864, 106.9057),
    ("Valencia", "Spain", 39.4699, -0.3763),
    ("Vienna", "Austria", 48.2082, 16.3738),
    ("Warsaw", "Poland", 52.2297, 21.0122),
    ("Yerevan", "Armenia", 40.1792, 44.4991),
    ("Zagreb", "Croatia", 45.8150, 15.9819),
    ("Zurich", "Switzerland", 47.3769, 8.5417),
)


class PlaceCatalog:
    """Known places keyed by lowercase name, kept in insertion order."""

    def __init__(self, places: Iterable[Place]):
        self._places: Dict[str, Place] = {}
        for place in places:
            self._places.setdefault(place.name.strip().lower(), place)

    @classmethod
    def default(cls) -> "PlaceCatalog":
        return cls(
            Place(name=name, region=region, lat=lat, lng=lng)
            for name, region, lat, lng in DEFAULT_PLACES
        )

    def __len__(self) -> int:
        return len(self._places)

    def lookup(self, name: str) -> Optional[Place]:
        return self._places.get(name.strip().lower())

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Place]:
        """Autocomplete: places whose name starts with ``query`` (case-insensitive)."""
        prefix = (query or "").strip().lower()
        if not prefix:
            return []
        return [place for key, place in self._places.items() if key.startswith(prefix)][:max(0, limit)]

    def names_starting_with(self, letter: str, exclude: Sequence[str] = (), limit: int = DEFAULT_HINT_LIMIT) -> List[str]:
        excluded = {name.strip().lower() for name in exclude}
        hints: List[str] = []
        for key, place in self._places.items():
            if key.startswith(letter) and key not in excluded:
                hints.append(place.name)
                if len(hints) >= limit:
                    break
        return hints


def get_last_letter(text: str) -> str:
    """Last alphabetic character of ``text``, lowercase; the last character if none is alphabetic."""
    for char in reversed(text):
        if _ALPHA_RE.match(char):
            return char.lower()
    return text[-1].lower() if text else ""


def validate_place_name(catalog: PlaceCatalog, name) -> PlaceValidation:
    if not name or not isinstance(name, str):
        return PlaceValidation(valid=False, error="Place name is required.")

    normalized = name.strip()

    if len(normalized) < MIN_NAME_LENGTH or len(normalized) > MAX_NAME_LENGTH:
        return PlaceValidation(
            valid=False,
            error=f"Place name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters.",
        )

    if not _NAME_RE.match(normalized):
        return PlaceValidation(valid=False, error="Place name contains invalid characters.")

    place = catalog.lookup(normalized)
    if place is None:
        return PlaceValidation(valid=False, error=f'"{normalized}" is not recognized as a valid place.')

    return PlaceValidation(valid=True, place=place)


def validate_chain_rule(previous: Optional[str], next_name: str) -> PlaceValidation:
    """The next place must start with the last letter of the previous one."""
    if not isinstance(previous, str) or not previous.strip():
        return PlaceValidation(valid=True)

    last_letter = get_last_letter(previous.strip().lower())
    first_letter = next_name.strip().lower()[:1]
    required = last_letter.upper()

    if first_letter != last_letter:
        return PlaceValidation(
            valid=False,
            required_letter=required,
            error=f'Next place must start with "{required}" (last letter of "{previous}").',
        )

    return PlaceValidation(valid=True, required_letter=required)


def check_repetition(name: str, used: Sequence[str] = ()) -> PlaceValidation:
    key = name.strip().lower()
    if key in {u.strip().lower() for u in used if isinstance(u, str)}:
        return PlaceValidation(valid=False, error=f'"{name}" has already been used in this session.')
    return PlaceValidation(valid=True)


def get_hints(
    catalog: PlaceCatalog,
    letter: Optional[str],
    used: Sequence[str] = (),
    limit: int = DEFAULT_HINT_LIMIT,
) -> List[str]:
    if not letter:
        return []
    return catalog.names_starting_with(
        letter.lower(),
        exclude=[u for u in used if isinstance(u, str)],
        limit=limit,
    )


def validate_place(
    catalog: PlaceCatalog,
    name,
    previous: Optional[str] = None,
    used: Optional[Sequence[str]] = None,
) -> PlaceValidation:
    """
    Full validation: known place, chain rule, no repetition.

    Failed results that know the required letter include hints.
    """
    used = list(used or [])

    name_check = validate_place_name(catalog, name)
    if not name_check.valid:
        return name_check

    chain_check = validate_chain_rule(previous, name)
    if not chain_check.valid:
        chain_check.place = name_check.place
        chain_check.hints = get_hints(catalog, chain_check.required_letter, used)
        return chain_check

    repetition_check = check_repetition(name, used)
    if not repetition_check.valid:
        return PlaceValidation(
            valid=False,
            place=name_check.place,
            required_letter=chain_check.required_letter,
            error=repetition_check.error,
            hints=get_hints(catalog, chain_check.required_letter, used),
        )

    return PlaceValidation(
        valid=True,
        place=name_check.place,
        required_letter=chain_check.required_letter,
    )
