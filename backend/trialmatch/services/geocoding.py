import logging
from typing import Any, Dict, Optional, Tuple

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from ..core.config import settings
from ..schemas.patient import PatientLocation

logger = logging.getLogger(__name__)


class LocationResolver:
    """
    Resolves a patient's ZIP code to coordinates with geopy's Nominatim.

    Lookups are cached per resolver, oldest entry evicted first once
    max_entries is reached. Geocoder errors are not cached. A failed lookup
    resolves to "no location", which switches the distance sub-score off.
    Calls block; run them off the event loop.
    """

    def __init__(
        self,
        geocoder: Any = None,
        country: str = "United States",
        timeout: Optional[int] = None,
        max_entries: Optional[int] = None
    ):
        self.geocoder = geocoder or Nominatim(user_agent=settings.GEOCODER_USER_AGENT)
        self.country = country
        self.timeout = timeout or settings.GEOCODE_TIMEOUT
        self.max_entries = max_entries or settings.GEOCODE_CACHE_SIZE
        self.location_cache: Dict[str, Optional[Tuple[float, float]]] = {}

    def get_coordinates(self, zip_code: str) -> Optional[Tuple[float, float]]:
        """Coordinates for a ZIP code, or None when it cannot be geocoded."""
        key = (zip_code or "").strip()
        if not key:
            return None
        if key in self.location_cache:
            return self.location_cache[key]

        coordinates = None
        try:
            location = self.geocoder.geocode(
                {"postalcode": key, "country": self.country},
                timeout=self.timeout
            )
            if location:
                coordinates = (location.latitude, location.longitude)
            else:
                logger.info(f"No geocoding result for ZIP {key}")
        except (GeopyError, ValueError) as e:
            logger.warning(f"Geocoding failed for ZIP {key}: {e}")
            return None

        if len(self.location_cache) >= self.max_entries:
            # Oldest insertion goes first
            self.location_cache.pop(next(iter(self.location_cache)))
        self.location_cache[key] = coordinates
        return coordinates

    def resolve(self, location: Optional[PatientLocation]) -> Optional[PatientLocation]:
        """Fill in coordinates from the ZIP code when the location has none."""
        if location is None or location.has_coordinates or not location.zip_code:
            return location
        coordinates = self.get_coordinates(location.zip_code)
        if coordinates is None:
            return location
        latitude, longitude = coordinates
        return location.model_copy(update={"latitude": latitude, "longitude": longitude})
