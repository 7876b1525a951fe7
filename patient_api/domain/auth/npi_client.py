"""
NPPES NPI Registry lookup

The registry is public and unauthenticated. Lookups are a straight pass-through;
results are not cached server side.
"""

import logging
import re
from typing import Optional

import httpx

from ...config import NPI_REGISTRY_URL

logger = logging.getLogger(__name__)

NPI_PATTERN = re.compile(r"^\d{10}$")


class NPIRegistryError(Exception):
    """Raised when the registry cannot be reached or answers with an error"""


def is_valid_npi_format(npi: Optional[str]) -> bool:
    return bool(npi) and bool(NPI_PATTERN.match(npi.strip()))


async def lookup_npi(npi: str) -> Optional[dict]:
    """
    Look up an NPI number.

    Returns:
        Provider summary dict when the registry knows the number, None otherwise
    """
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(NPI_REGISTRY_URL, params={"version": "2.1", "number": npi})
    except httpx.HTTPError as e:
        logger.error(f"❌ NPI registry request failed: {e}")
        raise NPIRegistryError("NPI registry unavailable") from e

    if response.status_code != 200:
        logger.error(f"❌ NPI registry returned HTTP {response.status_code}")
        raise NPIRegistryError(f"NPI registry returned HTTP {response.status_code}")

    payload = response.json()
    results = payload.get("results") or []
    if not payload.get("result_count") or not results:
        return None

    record = results[0]
    basic = record.get("basic", {})
    taxonomies = record.get("taxonomies") or []
    primary = next((t for t in taxonomies if t.get("primary")), taxonomies[0] if taxonomies else {})

    return {
        "npi": record.get("number"),
        "firstName": basic.get("first_name"),
        "lastName": basic.get("last_name"),
        "credential": basic.get("credential"),
        "status": basic.get("status"),
        "taxonomy": primary.get("desc"),
        "licenseState": primary.get("state"),
    }
