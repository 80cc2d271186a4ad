import os
import logging
from typing import Optional, Tuple

import requests

logger = logging.getLogger(__name__)


def geocode_address(street: str, city: str, postal_code: Optional[str] = None) -> Optional[Tuple[float, float]]:
    """Best-effort (lat, lng) lookup against a Nominatim-compatible endpoint.

    Returns None when no geocoder is configured, nothing matches, or the call fails.
    """
    url = os.getenv("GEOCODER_URL")
    if not url:
        return None
    query = ", ".join(part for part in (street, postal_code, city) if part)
    headers = {"User-Agent": os.getenv("GEOCODER_USER_AGENT", "field-crm")}
    try:
        response = requests.get(url, params={"q": query, "format": "json", "limit": 1}, headers=headers, timeout=5)
        response.raise_for_status()
        results = response.json()
        if not results:
            logger.info(f"Geocoder found nothing for '{query}'")
            return None
        return float(results[0]["lat"]), float(results[0]["lon"])
    except (requests.RequestException, ValueError, KeyError, IndexError) as e:
        logger.warning(f"Geocoding failed for '{query}': {e}")
        return None
