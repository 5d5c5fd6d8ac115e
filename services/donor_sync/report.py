"""
Report file I/O for donor sync.

Reads manual overrides from donor_info.toml and writes the merged
donor list (donors.toml) and metrics (metrics.toml). Outputs are staged
in temporary files and moved into place together, so a failed run
never leaves a partial report behind.
"""

import os
import shutil
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import tomli_w

from .log_config import get_logger
from .models import Donor, DonorSyncError, Metrics

logger = get_logger(__name__)

DONORS_FILENAME = "donors.toml"
METRICS_FILENAME = "metrics.toml"

# TOML key -> Donor attribute, where they differ
KEY_ALIASES: Dict[str, str] = {
    "customer_id": "payer_id",
}

# Donor attribute -> accepted TOML value types
FIELD_TYPES: Dict[str, Tuple[type, ...]] = {
    "payer_id": (str,),
    "source": (str,),
    "amount": (int,),
    "name": (str,),
    "link": (str,),
    "logo": (str,),
    "style": (str,),
    "square_logo": (bool,),
    "logo_scale": (float, int),
    "past": (bool,),
    "anonymize": (bool,),
}

# Written key order; anonymize is an instruction, never output
OUTPUT_FIELDS = (
    "payer_id",
    "name",
    "link",
    "logo",
    "amount",
    "source",
    "style",
    "past",
    "square_logo",
    "logo_scale",
)

class OverrideFileError(DonorSyncError):
    """Override file is missing or is not valid TOML."""
    pass

class InvalidOverrideError(Exception):
    """A single override record has a field of the wrong type."""
    pass

@dataclass
class OverrideLoadResult:
    """Override donors plus the records that were rejected."""
    donors: List[Donor] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

def donor_from_record(record: Dict[str, Any]) -> Donor:
    """
    Build a Donor from one [[donor]] table.

    Raises:
        InvalidOverrideError: A known field has the wrong type
    """
    values: Dict[str, Any] = {}

    for key, value in record.items():
        attr = KEY_ALIASES.get(key, key)
        expected = FIELD_TYPES.get(attr)
        if expected is None:
            logger.warning("Unknown override field ignored", field=key)
            continue

        # bool is an int subclass; amounts must be real integers
        if isinstance(value, bool) and bool not in expected:
            raise InvalidOverrideError(f"Field '{key}' must be {expected[0].__name__}, got bool")
        if not isinstance(value, expected):
            raise InvalidOverrideError(
                f"Field '{key}' must be {expected[0].__name__}, got {type(value).__name__}"
            )

        if attr == "logo_scale":
            value = float(value)
        values[attr] = value

    return Donor(**values)

def load_overrides(path: Union[str, Path]) -> OverrideLoadResult:
    """
    Load override donors from a TOML file.

    Records with wrongly typed fields are skipped and reported.

    Raises:
        OverrideFileError: File missing or unparseable

    Example:
        >>> result = load_overrides("donor_info.toml")
        >>> print(f"{len(result.donors)} overrides")
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            document = tomllib.load(f)
    except FileNotFoundError as e:
        raise OverrideFileError(f"Override file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise OverrideFileError(f"Override file {path} is not valid TOML: {e}") from e

    records = document.get("donor", [])
    if not isinstance(records, list):
        raise OverrideFileError(f"'donor' in {path} must be an array of tables")

    result = OverrideLoadResult()
    for i, record in enumerate(records):
        try:
            if not isinstance(record, dict):
                raise InvalidOverrideError("Override entry is not a table")
            result.donors.append(donor_from_record(record))
        except InvalidOverrideError as e:
            result.errors.append({"index": i, "error": str(e)})
            logger.warning("Override skipped", index=i, error=str(e))

    logger.info("Overrides loaded", path=str(path), overrides=len(result.donors), errors=len(result.errors))

    return result

def donor_to_record(donor: Donor) -> Dict[str, Any]:
    """Serialize a Donor for donors.toml, omitting unset fields."""
    record: Dict[str, Any] = {}
    for attr in OUTPUT_FIELDS:
        value = getattr(donor, attr)
        if value is None:
            continue
        key = "customer_id" if attr == "payer_id" else attr
        record[key] = value
    return record

def render_donors(donors: List[Donor]) -> str:
    return tomli_w.dumps({"donor": [donor_to_record(d) for d in donors]})

def render_metrics(metrics: Metrics) -> str:
    return tomli_w.dumps(metrics.to_dict())

def write_report(
    donors: List[Donor],
    metrics: Metrics,
    output_dir: Union[str, Path],
) -> Tuple[Path, Path]:
    """
    Write donors.toml and metrics.toml into output_dir.

    Both documents are rendered before anything touches the disk, then
    staged as temporary files in the same directory and renamed into
    place.

    Returns:
        Tuple of (donors_path, metrics_path)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    documents = {
        output_dir / DONORS_FILENAME: render_donors(donors),
        output_dir / METRICS_FILENAME: render_metrics(metrics),
    }

    staged: List[Tuple[str, Path]] = []
    try:
        for target, content in documents.items():
            fd, tmp_name = tempfile.mkstemp(dir=output_dir, prefix=f".{target.name}.", suffix=".tmp")
            staged.append((tmp_name, target))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
    except OSError:
        for tmp_name, _ in staged:
            _remove_quietly(tmp_name)
        raise

    _commit(staged)

    logger.info("Report written", output_dir=str(output_dir), donors=len(donors))

    donors_path, metrics_path = documents.keys()
    return donors_path, metrics_path

def _commit(staged: List[Tuple[str, Path]]) -> None:
    """
    Move staged files over their targets as one unit.

    Existing targets are copied aside first. If any rename fails, the
    targets already replaced are restored (or removed when they did not
    exist before), so donors.toml and metrics.toml always come from the
    same run.
    """
    backups: Dict[Path, Optional[str]] = {}
    committed: List[Path] = []

    try:
        for _, target in staged:
            backups[target] = _backup(target)

        for tmp_name, target in staged:
            os.replace(tmp_name, target)
            committed.append(target)
    except OSError as e:
        for target in committed:
            backup = backups.pop(target)
            if backup is None:
                _remove_quietly(str(target))
            else:
                os.replace(backup, target)
        logger.error(
            "Report rename failed, previous report restored",
            error=str(e),
            restored=[target.name for target in committed],
        )
        for tmp_name, _ in staged:
            _remove_quietly(tmp_name)
        raise
    finally:
        for backup in backups.values():
            if backup is not None:
                _remove_quietly(backup)

def _backup(target: Path) -> Optional[str]:
    """Copy an existing target next to itself; None if there is nothing to keep."""
    if not target.exists():
        return None
    fd, backup = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".bak")
    os.close(fd)
    try:
        shutil.copy2(target, backup)
    except OSError:
        _remove_quietly(backup)
        raise
    return backup

def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
