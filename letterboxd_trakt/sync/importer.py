"""
Letterboxd export reader.

Accepts ``diary.csv`` directly or the ``.zip`` export that contains it.
"""

import csv
import io
import os
import zipfile
from typing import BinaryIO, Dict, List, Optional, Union

from letterboxd_trakt.sync.models import WatchRecord
from letterboxd_trakt.utils.logging import get_logger

logger = get_logger(__name__)

DIARY_FILENAME = "diary.csv"


class ImportFormatError(ValueError):
    """The uploaded file is not a usable Letterboxd export."""


def _cell(row: Dict[str, Optional[str]], *names: str) -> Optional[str]:
    for name in names:
        value = row.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def parse_diary_csv(text: str) -> List[WatchRecord]:
    """
    Parse Letterboxd diary CSV text into records.

    Entries sharing a title and year collapse into the first one seen.

    Args:
        text: CSV content with a header row

    Returns:
        WatchRecords in file order
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames or "Name" not in reader.fieldnames:
        raise ImportFormatError("CSV has no 'Name' column, is this a Letterboxd diary export?")

    records: List[WatchRecord] = []
    seen = set()
    duplicates = 0

    for row in reader:
        title = _cell(row, "Name")
        if not title:
            continue

        record = WatchRecord(
            title=title,
            year=_cell(row, "Year") or "",
            local_rating=_cell(row, "Rating"),
            local_watched_date=_cell(row, "Watched Date", "WatchedDate", "Date"),
        )
        if record.key in seen:
            duplicates += 1
            continue
        seen.add(record.key)
        records.append(record)

    logger.info("Parsed Letterboxd diary", records=len(records), duplicates=duplicates)
    return records


def load_export(source: Union[str, BinaryIO], filename: Optional[str] = None) -> List[WatchRecord]:
    """
    Load records from a diary CSV or a Letterboxd export zip.

    Args:
        source: Path or binary file object
        filename: Name used to detect the format when ``source`` is a file object

    Returns:
        WatchRecords in file order

    Raises:
        ImportFormatError: If the file type is unsupported or the zip has no diary
    """
    name = (filename or (source if isinstance(source, str) else "")).lower()

    if name.endswith(".zip"):
        with zipfile.ZipFile(source) as archive:
            diary = next(
                (n for n in archive.namelist() if os.path.basename(n) == DIARY_FILENAME),
                None,
            )
            if diary is None:
                raise ImportFormatError(f"Could not find {DIARY_FILENAME} in the zip file")
            text = archive.read(diary).decode("utf-8-sig")
        return parse_diary_csv(text)

    if name.endswith(".csv"):
        if isinstance(source, str):
            with open(source, encoding="utf-8-sig", newline="") as handle:
                return parse_diary_csv(handle.read())
        return parse_diary_csv(source.read().decode("utf-8-sig"))

    raise ImportFormatError(f"Unsupported file type: {name or 'unknown'}")
