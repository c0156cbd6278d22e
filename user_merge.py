import logging
from typing import Any, Dict

from restore_session import RestoreSession

logger = logging.getLogger(__name__)

USERS_COLLECTION = "system.users"
USERS_FILE_NAME = USERS_COLLECTION + ".bson"
USER_FIELD = "user"


# system.users אי אפשר לעשות drop, לכן עם --drop ממזגים ידנית:
# משתמשים קיימים מוחלפים, חדשים נוספים, ומה שלא הופיע בדאמפ נמחק בסוף


def snapshot_users(session: RestoreSession, ns: str):
    """שמירת שמות המשתמשים שכבר קיימים ביעד לפני השחזור"""
    cursor = session.conn.query(ns, {}, projection={USER_FIELD: 1})
    for user in cursor:
        if USER_FIELD in user:
            session.user_snapshot.add(user[USER_FIELD])
    logger.info(f"\t{len(session.user_snapshot)} existing users in {ns}")


def is_known_user(session: RestoreSession, doc: Dict[str, Any]) -> bool:
    return doc.get(USER_FIELD) in session.user_snapshot


def replace_user(session: RestoreSession, ns: str, doc: Dict[str, Any]):
    """החלפת רשומת משתמש קיימת במקום הוספה"""
    user = doc[USER_FIELD]
    session.conn.update(ns, {USER_FIELD: user}, doc)
    session.user_snapshot.discard(user)


def remove_stale_users(session: RestoreSession, ns: str):
    """מחיקת משתמשים שהיו ביעד אבל לא הופיעו בדאמפ"""
    for user in sorted(session.user_snapshot):
        logger.info(f"\tremoving user {user} (not in dump)")
        session.conn.remove(ns, {USER_FIELD: user})
    session.user_snapshot.clear()
