"""
US Postal Code to Shipping Zone Mapper

Maps destination ZIP codes to a zone bucket (0 local .. 8 remote) and a
delivery estimate. Lookup order:
    1. exact 5-digit match in POSTAL_ZONE_MAP
    2. 3-digit prefix match in PREFIX_ZONE_MAP
    3. DEFAULT_ZONE (cross-country)

Never raises: unmapped or garbage input degrades to DEFAULT_ZONE so quoting
always has a comparable estimate.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

MIN_ZONE = 0
MAX_ZONE = 8
DEFAULT_ZONE = 3

POSTAL_ZONE_MAP: Dict[str, int] = {
    # New York Metro
    "10001": 1, "10002": 1, "10003": 1, "10004": 1, "10005": 1,
    "11001": 1, "11002": 1, "11003": 1, "11004": 1, "11005": 1,
    # East Coast
    "02101": 2, "02102": 2, "02103": 2,  # Boston
    "20001": 2, "20002": 2, "20003": 2,  # Washington DC
    "33101": 2, "33102": 2, "33103": 2,  # Miami
    # Midwest
    "60601": 3, "60602": 3, "60603": 3,  # Chicago
    "48201": 3, "48202": 3, "48203": 3,  # Detroit
    "55401": 4, "55402": 4, "55403": 4,  # Minneapolis
    # South
    "30301": 3, "30302": 3, "30303": 3,  # Atlanta
    "75201": 4, "75202": 4, "75203": 4,  # Dallas
    "77001": 4, "77002": 4, "77003": 4,  # Houston
    # West Coast
    "90210": 5, "90211": 5, "90212": 5,  # Los Angeles
    "94101": 6, "94102": 6, "94103": 6,  # San Francisco
    "98101": 6, "98102": 6, "98103": 6,  # Seattle
    # Mountain / Remote
    "80201": 7, "80202": 7, "80203": 7,  # Denver
    "84101": 7, "84102": 7, "84103": 7,  # Salt Lake City
    "99501": 8, "99502": 8, "99503": 8,  # Alaska
    "96801": 8, "96802": 8, "96803": 8,  # Hawaii
}


def _prefix_range(first: int, last: int, zone: int) -> Dict[str, int]:
    return {f"{p:03d}": zone for p in range(first, last + 1)}


PREFIX_ZONE_MAP: Dict[str, int] = {
    **_prefix_range(10, 24, 2),     # MA
    **_prefix_range(30, 39, 2),     # NH
    **_prefix_range(100, 119, 1),   # NY / NJ
    **_prefix_range(200, 209, 2),   # DC / MD / VA
    **_prefix_range(300, 314, 3),   # GA / FL
    **_prefix_range(320, 324, 3),   # FL
    **_prefix_range(330, 334, 3),   # FL / AL
    **_prefix_range(460, 464, 3),   # IN
    **_prefix_range(480, 484, 3),   # MI
    **_prefix_range(490, 494, 3),   # MI
    **_prefix_range(600, 614, 3),   # IL / IN
    **_prefix_range(700, 704, 4),   # LA
    **_prefix_range(750, 754, 4),   # TX
    **_prefix_range(770, 779, 4),   # TX
    **_prefix_range(800, 814, 7),   # CO
    **_prefix_range(820, 824, 7),   # WY
    **_prefix_range(830, 834, 7),   # WY / ID
    **_prefix_range(840, 849, 7),   # UT
    **_prefix_range(900, 924, 5),   # CA
    **_prefix_range(930, 939, 5),   # CA
    **_prefix_range(940, 949, 6),   # CA / Bay Area
    "967": 8, "968": 8,             # HI
    **_prefix_range(970, 994, 6),   # OR / WA
    **_prefix_range(995, 999, 8),   # AK
}


@dataclass(frozen=True)
class DeliveryEstimate:
    """Delivery window in business days."""
    min_days: int
    max_days: int

    def __str__(self) -> str:
        if self.min_days == self.max_days:
            unit = "day" if self.min_days == 1 else "days"
            return f"{self.min_days} {unit}"
        return f"{self.min_days}-{self.max_days} days"


STANDARD_DELIVERY: Dict[int, DeliveryEstimate] = {
    0: DeliveryEstimate(1, 1),
    1: DeliveryEstimate(1, 1),
    2: DeliveryEstimate(1, 2),
    3: DeliveryEstimate(2, 2),
    4: DeliveryEstimate(2, 3),
    5: DeliveryEstimate(3, 4),
    6: DeliveryEstimate(4, 4),
    7: DeliveryEstimate(4, 5),
    8: DeliveryEstimate(5, 6),
}

EXPRESS_DELIVERY: Dict[int, DeliveryEstimate] = {
    0: DeliveryEstimate(1, 1),
    1: DeliveryEstimate(1, 1),
    2: DeliveryEstimate(1, 1),
    3: DeliveryEstimate(1, 1),
    4: DeliveryEstimate(1, 2),
    5: DeliveryEstimate(2, 3),
    6: DeliveryEstimate(3, 3),
    7: DeliveryEstimate(3, 4),
    8: DeliveryEstimate(4, 5),
}

UNKNOWN_ZONE_DELIVERY = DeliveryEstimate(3, 5)

_NON_DIGITS = re.compile(r"[^0-9]")


def sanitize_postal_code(postal_code: Optional[str]) -> str:
    """Strip everything but digits and keep the leading five (drops ZIP+4)."""
    if not postal_code:
        return ""
    return _NON_DIGITS.sub("", str(postal_code))[:5]


def delivery_estimate(zone: int, is_express: bool = False) -> DeliveryEstimate:
    """
    Delivery window for a zone.

    Express never drops below 1 day and never exceeds the standard window.
    Zones outside 0-8 get the generic 3-5 day window.
    """
    table = EXPRESS_DELIVERY if is_express else STANDARD_DELIVERY
    return table.get(zone, UNKNOWN_ZONE_DELIVERY)


class PostalZoneMapper:
    """
    Destination ZIP to zone lookup.

    Tables are injectable so a curated table can replace the built-in one
    without touching the lookup rules.
    """

    def __init__(
        self,
        exact_map: Optional[Dict[str, int]] = None,
        prefix_map: Optional[Dict[str, int]] = None,
        default_zone: int = DEFAULT_ZONE,
    ):
        self.exact_map = POSTAL_ZONE_MAP if exact_map is None else exact_map
        self.prefix_map = PREFIX_ZONE_MAP if prefix_map is None else prefix_map
        self.default_zone = default_zone

    def get_zone(self, postal_code: Optional[str]) -> int:
        clean_zip = sanitize_postal_code(postal_code)

        zone = self.exact_map.get(clean_zip)
        if zone is not None:
            return zone

        if len(clean_zip) >= 3:
            zone = self.prefix_map.get(clean_zip[:3])
            if zone is not None:
                return zone

        logger.debug(f"No zone mapping for postal code {postal_code!r}, using default zone {self.default_zone}")
        return self.default_zone

    def zone_for(self, postal_code: Optional[str], is_express: bool = False) -> Tuple[int, DeliveryEstimate]:
        """Return (zone, delivery estimate) for a destination postal code."""
        zone = self.get_zone(postal_code)
        return zone, delivery_estimate(zone, is_express)


postal_zone_mapper = PostalZoneMapper()
