from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Protocol

from monoshelf.core.models import Location

class LocationIndex(Protocol):
    def length(self) -> int: ...

    def percentage_from_cfi(self, cfi: str) -> float: ...

def round_percent(fraction: float) -> int:
    """
    Converts a fraction in [0, 1] to a whole percent, halves rounded away from zero.
    Works on the shortest repr of the float so 0.505 gives 51, not 50.
    """
    fraction = min(max(fraction, 0.0), 1.0)
    scaled = Decimal(repr(fraction)) * 100
    return int(scaled.quantize(Decimal('1'), rounding=ROUND_HALF_UP))

def percent(location: Location, locations: Optional[LocationIndex]) -> Optional[int]:
    """
    Returns the read percentage for a location, or None when unavailable.

    `locations` is None until the location index has finished building; an
    index with zero entries is also treated as unavailable.
    """
    if locations is None or locations.length() == 0:
        return None
    return round_percent(locations.percentage_from_cfi(location.start.cfi))

def format_progress(label: str, pct: Optional[int]) -> str:
    if pct is None:
        return label
    return f"{label} / {pct}%"
