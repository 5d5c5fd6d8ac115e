"""
every.org source: supporter export rows.

Loads data from:
- A local CSV export (preferred when present)
- The nonprofit admin "donationsBalance" route, whose JSON body embeds
  the same export as a list of rows

Rows then go through the consent-gated privacy filter.
"""

import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pandas as pd

from .log_config import get_logger, log_api_call, log_source_batch
from .models import Donor, DonorSyncError
from .privacy import SOURCE_NAME, ConsentPolicy, filter_rows
from .settings import DonorSyncSettings, settings

logger = get_logger(__name__)


class EveryOrgError(DonorSyncError):
    """Base exception for every.org source errors."""
    pass


class EveryOrgConfigError(EveryOrgError):
    """Neither a CSV export nor API credentials are available."""
    pass


class EveryOrgAPIError(EveryOrgError):
    """The donations balance route failed or returned an unexpected body."""
    pass


def _records_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a DataFrame to row dicts, replacing NaN with None."""
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")


def read_csv_export(path: str) -> List[Dict[str, Any]]:
    """
    Read a local every.org CSV export.

    Tries a couple of encodings, since exports opened and re-saved in
    spreadsheet tools are not always UTF-8.

    Raises:
        EveryOrgError: File cannot be parsed
    """
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            # Only empty cells are missing; "NA" or "None" may be a real id or name
            df = pd.read_csv(path, encoding=encoding, dtype=str, keep_default_na=False, na_values=[""])
        except UnicodeDecodeError:
            continue
        except Exception as e:
            raise EveryOrgError(f"Error reading CSV export {path}: {e}") from e

        records = _records_from_frame(df)
        logger.info("Loaded every.org CSV export", path=path, rows=len(records))
        return records

    raise EveryOrgError(f"Could not decode CSV export {path}")


def rows_from_csv_data(csv_rows: List[List[Optional[str]]]) -> List[Dict[str, Any]]:
    """
    Turn the embedded export (header row + data rows) into row dicts.

    Commas inside cells are replaced with spaces, as in the CSV the
    dashboard rebuilds from the same data. Short rows are padded.
    """
    if not csv_rows:
        return []

    header = [str(column).replace(",", " ").strip() for column in csv_rows[0]]
    records: List[Dict[str, Any]] = []

    for raw in csv_rows[1:]:
        if not raw or all(cell in (None, "") for cell in raw):
            continue
        cells = [None if cell is None else str(cell).replace(",", " ") for cell in raw]
        cells += [None] * (len(header) - len(cells))
        records.append(dict(zip(header, cells)))

    return records


async def fetch_balance_rows(
    config: DonorSyncSettings,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Dict[str, Any]]:
    """
    Fetch the supporter export through the donations balance route.

    Raises:
        EveryOrgConfigError: No session cookie configured
        EveryOrgAPIError: Request failed or body has no CSV data
    """
    if not config.every_org_session_cookie:
        raise EveryOrgConfigError("Missing EVERY_ORG_SESSION_COOKIE in environment")

    url = config.every_org_balance_url
    headers = {
        "Cookie": config.every_org_session_cookie,
        "Accept": "application/json",
        "User-Agent": f"{config.service_name}/1.0",
    }

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=config.http_timeout)

    start_time = time.monotonic()
    try:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as e:
        raise EveryOrgAPIError(
            f"HTTP {e.response.status_code} from donations balance route"
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise EveryOrgAPIError(f"Donations balance request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    log_api_call(
        logger,
        method="GET",
        url=url,
        status_code=response.status_code,
        duration_ms=(time.monotonic() - start_time) * 1000,
    )

    try:
        csv_data = body["data"]["csvData"]
    except (KeyError, TypeError) as e:
        raise EveryOrgAPIError("Donations balance response has no csvData") from e

    if csv_data.get("error"):
        logger.warning("every.org export reported row errors", error_rows=len(csv_data["error"]))

    return rows_from_csv_data(csv_data.get("ok") or [])


async def load_rows(
    config: DonorSyncSettings,
    csv_path: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Dict[str, Any]]:
    """Load rows from the CSV export if it exists, else from the API."""
    path = csv_path or config.every_org_csv_path
    if path and Path(path).is_file():
        return read_csv_export(path)

    logger.info("No every.org CSV export found, using API", path=path)
    return await fetch_balance_rows(config, client)


async def get_every_org_donors(
    now: datetime,
    config: Optional[DonorSyncSettings] = None,
    csv_path: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Donor]:
    """
    Load every.org supporters and convert them into donors.

    Args:
        now: Reference time for recency classification
        config: Settings (defaults to the process settings)
        csv_path: Override for the CSV export location
        client: Preconfigured HTTP client (tests)

    Returns:
        Donors allowed out by the consent policy, in export order
    """
    config = config or settings()
    start_time = time.monotonic()

    rows = await load_rows(config, csv_path, client)

    result = filter_rows(
        rows,
        now,
        policy=ConsentPolicy(config.every_org_consent_policy),
        date_format=config.every_org_date_format,
        grace_period_days=config.grace_period_days,
    )

    log_source_batch(
        logger,
        source=SOURCE_NAME,
        donors_emitted=len(result.donors),
        records_skipped=result.skipped,
        duration_ms=(time.monotonic() - start_time) * 1000,
    )

    return result.donors
