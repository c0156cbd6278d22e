import logging
from pathlib import Path
from typing import Any, Dict

import bson
from bson.errors import InvalidBSON

import query_matcher
import user_merge
from connection import INDEX_COLLECTION
from errors import RestoreError
from index_builder import build_index
from oplog_replay import is_noop
from restore_session import CollectionContext, OplogReplayContext, RestoreSession

logger = logging.getLogger(__name__)


def _wait_for_replicas(session: RestoreSession, db_name: str):
    # w=0 הוא fire-and-forget, לא מחכים בכלל
    w = session.options.w
    if w > 0:
        err = session.conn.get_last_error(db_name, w)
        if err:
            logger.error(err)


def _restore_document(session: RestoreSession, context: CollectionContext, doc: Dict[str, Any]):
    options = session.options
    is_users = context.collection == user_merge.USERS_COLLECTION
    # --filter לא חל על משתמשים, אחרת משתמש שסונן יימחק בסוף כ-stale
    if not is_users and not query_matcher.matches(doc, options.document_filter):
        session.stats.filtered += 1
        return

    if options.drop and is_users and user_merge.is_known_user(session, doc):
        user_merge.replace_user(session, context.ns, doc)
    else:
        session.conn.insert(context.ns, doc)
    session.stats.restored += 1
    _wait_for_replicas(session, context.db)


def _replay_entry(session: RestoreSession, entry: Dict[str, Any]):
    oplog = session.oplog_filter
    if oplog is None:
        raise RestoreError("Oplog replay was not configured")
    if not oplog.admits(entry):
        return
    oplog.apply(session.conn, entry, session.options.w)


def dispatch(session: RestoreSession, doc: Dict[str, Any]):
    """ניתוב מסמך אחד לפי ההקשר הפעיל"""
    context = session.context
    if isinstance(context, OplogReplayContext):
        if is_noop(doc):
            return
        _replay_entry(session, doc)
    elif isinstance(context, CollectionContext):
        if context.collection == INDEX_COLLECTION:
            build_index(session, doc, keep_collection_name=True)
        else:
            _restore_document(session, context, doc)
    else:
        raise RestoreError("No namespace context set before dispatching documents")


def stream_file(session: RestoreSession, path: Path):
    """קריאת קובץ BSON מסמך אחרי מסמך והעברת כל אחד ל-dispatch, לפי הסדר שבדיסק"""
    with open(path, "rb") as f:
        try:
            for doc in bson.decode_file_iter(f):
                dispatch(session, doc)
        except InvalidBSON as e:
            if isinstance(session.context, OplogReplayContext) and session.oplog_filter is not None:
                done = f"{session.oplog_filter.total} oplog entries"
            else:
                done = f"{session.stats.restored} documents"
            logger.error(f"{path}: corrupt data, stopped after {done}: {e}")
