import re
from typing import Optional

import httpx
import structlog

import schemas
from settings import Settings

logger = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_postal_code(code: str) -> Optional[str]:
    """Strip everything but digits; only 8-digit CEPs are looked up."""
    digits = _NON_DIGITS.sub("", code or "")
    return digits if len(digits) == 8 else None


async def lookup_postal_code(
    code: str,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[schemas.Address]:
    """Resolve a postal code to street, neighborhood, city and state.

    Returns None for malformed codes, unknown codes and lookup failures; the
    form simply stays empty in those cases.
    """
    cep = normalize_postal_code(code)
    if cep is None:
        return None

    url = f"{settings.address_lookup_url.rstrip('/')}/{cep}/json/"
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=5)
    try:
        response = await client.get(url)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Postal code lookup failed", cep=cep, exc=str(exc))
        return None
    finally:
        if owns_client:
            await client.aclose()

    if data.get("erro"):
        logger.info("Postal code not found", cep=cep)
        return None

    return schemas.Address(
        zip_code=cep,
        street=data.get("logradouro") or None,
        neighborhood=data.get("bairro") or None,
        city=data.get("localidade") or None,
        state=data.get("uf") or None,
    )
