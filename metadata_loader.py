import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from bson import json_util

from errors import MetadataReadError

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"


class _Undefined:
    """ערך BSON מסוג undefined שהופיע בקובץ ה-metadata"""

    def __repr__(self):
        return "UNDEFINED"


UNDEFINED = _Undefined()


def strip_undefined(value: Any, where: str, path: str = "") -> Any:
    """הסרת ערכי undefined בכל עומק, כי bson לא יודע לקודד אותם"""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            field = f"{path}.{key}" if path else key
            if item is UNDEFINED:
                logger.warning(f"{where}: skipping undefined field: {field}")
                continue
            cleaned[key] = strip_undefined(item, where, field)
        return cleaned
    if isinstance(value, list):
        return [strip_undefined(item, where, path) for item in value if item is not UNDEFINED]
    return value


def _object_pairs_hook(pairs):
    # json_util ממיר $undefined ל-None, ואז אי אפשר להבדיל אותו מ-null אמיתי
    if len(pairs) == 1 and pairs[0][0] == "$undefined":
        return UNDEFINED
    return json_util.object_pairs_hook(pairs)


def metadata_path_for(data_file: Path) -> Path:
    """הנתיב של קובץ ה-metadata ששייך לקובץ דאטה"""
    collection_name = data_file.name.rsplit(".", 1)[0]
    return data_file.parent / (collection_name + METADATA_SUFFIX)


def load_metadata(path: Path) -> Dict[str, Any]:
    """קריאת קובץ metadata שלם (options + indexes)"""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise MetadataReadError(f"Could not read metadata file {path}: {e}") from e

    try:
        metadata = json.loads(text, object_pairs_hook=_object_pairs_hook)
    except ValueError as e:
        raise MetadataReadError(f"Could not parse metadata file {path}: {e}") from e

    if not isinstance(metadata, dict):
        raise MetadataReadError(f"Metadata file {path} does not contain a document")
    return metadata


def load_metadata_if_present(path: Path) -> Optional[Dict[str, Any]]:
    """כמו load_metadata, אבל קובץ חסר הוא לא שגיאה (דאמפים ישנים בלי metadata)"""
    path = Path(path)
    if not path.exists():
        # קולקציות מערכת לא אמורות להגיע עם metadata
        if not path.name.startswith("system."):
            logger.warning(f"{path} not found. Skipping.")
        return None
    return load_metadata(path)
