import logging
from typing import Any, Dict, Optional

from bson.timestamp import Timestamp

import query_matcher
from errors import OplogConfigError

logger = logging.getLogger(__name__)

OPLOG_FILE_NAME = "oplog.bson"
SERVER_OPLOG_NS = "local.oplog.rs"
NOOP_MARKER = "n"

# applyOps קיים רק משרת 1.7.4 ומעלה
MIN_REPLAY_VERSION = (1, 7, 4)

IDLE = "idle"
CONFIGURED = "configured"
STREAMING = "streaming"
DONE = "done"


def parse_oplog_limit(value: str) -> Timestamp:
    """פירוק seconds[:increment] ל-Timestamp. increment ברירת מחדל 0"""
    seconds, _, increment = value.partition(":")
    increment = increment or "0"
    try:
        return Timestamp(int(seconds), int(increment))
    except (TypeError, ValueError, OverflowError) as e:
        raise OplogConfigError(
            f"Could not parse oplogLimit into Timestamp from values ( {seconds} , {increment} )"
        ) from e


def parse_version(version: str):
    parts = []
    for piece in version.split("."):
        digits = ""
        for ch in piece:
            if not ch.isdigit():
                break
            digits += ch
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def version_supports_replay(version: Optional[str]) -> bool:
    if not version:
        return False
    return parse_version(version)[:3] >= MIN_REPLAY_VERSION


def probe_newest_timestamp(conn) -> Optional[Timestamp]:
    """ה-ts של הרשומה החדשה ביותר ב-oplog של השרת עצמו (None אם ה-oplog ריק)"""
    cursor = conn.query(SERVER_OPLOG_NS, {}, limit=1, sort=[("$natural", -1)])
    for entry in cursor:
        return entry.get("ts")
    return None


def is_noop(entry: Dict[str, Any]) -> bool:
    return str(entry.get("op", "")).startswith(NOOP_MARKER)


class OplogReplayFilter:
    """חלון הזמנים והפילטר של הרצת ה-oplog, כולל מוני applied/skipped"""

    def __init__(self):
        self.state = IDLE
        self.limit: Optional[Timestamp] = None
        self.newest: Optional[Timestamp] = None
        self.predicate: Optional[Dict[str, Any]] = None
        self.applied = 0
        self.skipped = 0

    @property
    def has_window(self) -> bool:
        return self.limit is not None

    @property
    def total(self) -> int:
        return self.applied + self.skipped

    def configure(self, conn, oplog_limit: str = "", extra: Optional[Dict[str, Any]] = None):
        """קביעת החלון - פעם אחת, לפני ששחזור הקולקציות מתחיל"""
        if self.state != IDLE:
            raise OplogConfigError(f"Oplog replay filter already {self.state}")

        window = None
        if oplog_limit:
            self.limit = parse_oplog_limit(oplog_limit)
            self.newest = probe_newest_timestamp(conn)
            if self.newest is not None and self.newest >= self.limit:
                raise OplogConfigError("The oplogLimit is not newer than the last oplog entry on the server.")

            ts_range: Dict[str, Any] = {}
            if self.newest is not None:
                ts_range["$gt"] = self.newest
            ts_range["$lt"] = self.limit
            window = {"ts": ts_range}

            if self.newest is not None:
                logger.info(f"Latest oplog entry on the server is {self.newest.time}:{self.newest.inc}")
                logger.info(f"Only applying oplog entries matching this criteria: {window}")

        if extra:
            query_matcher.validate(extra)

        if window and extra:
            self.predicate = {"$and": [window, extra]}
        else:
            self.predicate = window or extra or None

        self.state = CONFIGURED

    def begin(self):
        if self.state != CONFIGURED:
            raise OplogConfigError(f"Cannot stream the oplog while {self.state}")
        self.state = STREAMING

    def admits(self, entry: Dict[str, Any]) -> bool:
        """האם הרשומה בתוך החלון. רשומה שנדחתה נספרת כ-skipped"""
        if query_matcher.matches(entry, self.predicate):
            return True
        self.skipped += 1
        return False

    def apply(self, conn, entry: Dict[str, Any], w: int = 0):
        """הרצת רשומה אחת כ-applyOps על המסד שב-ns שלה. כישלון נרשם ללוג בלבד"""
        db_name = str(entry.get("ns", "")).split(".", 1)[0]
        ok, out = conn.run_command(db_name, {"applyOps": [entry]})
        if not ok:
            logger.error(f"applyOps failed on {db_name}: {out.get('errmsg')}")
        self.applied += 1

        if w > 0:
            err = conn.get_last_error(db_name, w)
            if err:
                logger.error(f"Error while replaying oplog: {err}")

    def finish(self):
        self.state = DONE
        logger.info(f"Applied {self.applied} oplog entries out of {self.total} ({self.skipped} skipped).")
