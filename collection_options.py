import logging
from typing import Any, Dict

from errors import CollectionCreateError
from metadata_loader import strip_undefined
from restore_session import CollectionContext

logger = logging.getLogger(__name__)


def build_create_command(context: CollectionContext, options: Dict[str, Any]) -> Dict[str, Any]:
    """בניית פקודת create מתוך ה-options שבדאמפ. create תמיד ראשון ועם שם היעד"""
    command: Dict[str, Any] = {"create": context.collection}
    for key, value in strip_undefined(options, context.ns).items():
        if key == "create":
            continue
        command[key] = value
    return command


def options_same(command: Dict[str, Any], existing: Dict[str, Any]) -> bool:
    """השוואת אפשרויות שדה-שדה, בלי להתחשב ב-create"""
    compared = 0
    for key, value in command.items():
        if key not in existing:
            if key == "create":
                continue
            return False
        compared += 1
        if value != existing[key]:
            return False
    return compared == len(existing)


def create_collection_with_options(conn, context: CollectionContext, options: Dict[str, Any]) -> bool:
    """יצירת הקולקציה עם האפשרויות מהדאמפ. מחזיר True אם נוצרה"""
    command = build_create_command(context, options)

    existing = conn.collection_options(context.ns)
    if existing is not None:
        if not options_same(command, existing):
            logger.warning(
                f"collection {context.ns} exists with different options than are in the metadata.json "
                "file and not using --drop. Options in the metadata file will be ignored."
            )
        return False

    ok, info = conn.run_command(context.db, command)
    if not ok:
        raise CollectionCreateError(f"Creating collection {context.ns} failed. Errmsg: {info.get('errmsg')}")
    logger.info(f"\tCreated collection {context.ns} with options: {command}")
    return True
