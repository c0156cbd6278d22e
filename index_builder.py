import logging
from typing import Any, Dict

from connection import INDEX_COLLECTION, split_namespace
from errors import IndexBuildError
from metadata_loader import strip_undefined
from restore_session import CollectionContext, RestoreSession

logger = logging.getLogger(__name__)


def rewrite_index_spec(
    spec: Dict[str, Any], db: str, collection: str, keep_collection_name: bool, keep_index_version: bool
) -> Dict[str, Any]:
    """
    התאמת הגדרת אינדקס מהדאמפ ליעד.

    ה-ns נבנה מחדש תמיד עם מסד היעד, כי שם המסד (ואולי גם שם הקולקציה) בזמן השחזור
    יכול להיות שונה ממה שנשמר בדאמפ. עם keep_collection_name נשאר שם הקולקציה
    שבהגדרה עצמה (system.indexes.bson מכיל אינדקסים של כמה קולקציות).
    """
    if keep_collection_name and "ns" not in spec:
        raise IndexBuildError(f"Index definition without a namespace: {spec}")

    rewritten: Dict[str, Any] = {}
    for key, value in strip_undefined(spec, f"{db}.{collection}").items():
        if key == "ns":
            _, original_collection = split_namespace(str(value))
            target = original_collection if keep_collection_name else collection
            rewritten["ns"] = f"{db}.{target}"
        elif key == "v" and not keep_index_version:
            continue
        else:
            rewritten[key] = value

    if "ns" not in rewritten:
        rewritten["ns"] = f"{db}.{collection}"
    return rewritten


def build_index(session: RestoreSession, spec: Dict[str, Any], keep_collection_name: bool):
    """בניית אינדקס אחד. כל כישלון כאן עוצר את השחזור"""
    context = session.context
    if not isinstance(context, CollectionContext):
        raise IndexBuildError("Cannot build an index outside of a collection context")

    options = session.options
    index = rewrite_index_spec(
        spec, context.db, context.collection, keep_collection_name, options.keep_index_version
    )
    logger.debug(f"\tCreating index: {index}")

    session.conn.insert(f"{context.db}.{INDEX_COLLECTION}", index)

    # על אינדקסים מחמירים יותר מאשר על דאטה רגיל
    ack = session.conn.get_last_error_detailed(context.db, options.w)
    if not isinstance(ack, dict):
        raise IndexBuildError(f"Could not confirm index build on {index['ns']}: {ack!r}")

    err = ack.get("err")
    if err is not None:
        if err == "norepl" and options.w > 1:
            logger.warning("Cannot specify write concern for non-replicas")
            return
        code = ack.get("code")
        code_text = f"{code} " if code is not None else ""
        raise IndexBuildError(f"Error creating index {index['ns']}: {code_text}{err}")

    if not ack.get("ok"):
        raise IndexBuildError(f"Error calling getLastError: {ack.get('errmsg')}")
