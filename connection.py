import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from pymongo import MongoClient
from pymongo.errors import OperationFailure, PyMongoError
from pymongo.write_concern import WriteConcern

import config

logger = logging.getLogger(__name__)

INDEX_COLLECTION = "system.indexes"

# קודי שרת שמשמעותם "ביקשת w>1 אבל אין רפליקציה"
NO_REPLICATION_CODES = {76}
NO_REPLICATION_MESSAGES = ("no replication", "not replicated", "standalone")


def split_namespace(ns: str) -> Tuple[str, str]:
    """פיצול "db.coll" לשם מסד ולשם קולקציה (הקולקציה יכולה להכיל נקודות)"""
    db_name, _, coll_name = ns.partition(".")
    return db_name, coll_name


def describe_error(exc: PyMongoError) -> Dict[str, Any]:
    """המרת חריגה של pymongo לרשומת last-error בסגנון השרת"""
    code = getattr(exc, "code", None)
    details = getattr(exc, "details", None) or {}
    message = details.get("errmsg") or str(exc)
    lowered = message.lower()
    if code in NO_REPLICATION_CODES or any(text in lowered for text in NO_REPLICATION_MESSAGES):
        return {"ok": 1.0, "err": "norepl", "code": code, "errmsg": message}
    return {"ok": 1.0, "err": message, "code": code}


class Connection:
    """חיבור יחיד לשרת היעד - כל הכתיבות של השחזור עוברות כאן"""

    def __init__(self, uri: Optional[str] = None, w: int = 0, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(
            uri or config.MONGODB_URI, serverSelectionTimeoutMS=config.SERVER_SELECTION_TIMEOUT_MS
        )
        self.w = w
        self.write_concern = WriteConcern(w=w) if w > 0 else WriteConcern()
        # כמו getLastError הישן: שגיאת הכתיבה האחרונה על החיבור, בלי קשר למסד
        self._last_error: Optional[Dict[str, Any]] = None

    def _collection(self, ns: str):
        db_name, coll_name = split_namespace(ns)
        return self.client[db_name].get_collection(coll_name, write_concern=self.write_concern)

    def _record_error(self, db_name: str, exc: PyMongoError):
        self._last_error = describe_error(exc)
        logger.debug(f"Write on {db_name} failed: {exc}")

    def _record_success(self, db_name: str):
        # רק הפעולה האחרונה נחשבת
        self._last_error = None

    # ===== קריאה =====

    def query(
        self,
        ns: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 0,
        projection: Optional[Dict[str, Any]] = None,
        sort: Optional[Iterable[Tuple[str, int]]] = None,
    ):
        """שאילתה על namespace מלא. מחזיר cursor"""
        db_name, coll_name = split_namespace(ns)
        cursor = self.client[db_name][coll_name].find(filter or {}, projection, limit=limit)
        if sort:
            cursor = cursor.sort(list(sort))
        return cursor

    def collection_options(self, ns: str) -> Optional[Dict[str, Any]]:
        """האפשרויות שהשרת שמר לקולקציה, או None אם היא לא קיימת"""
        db_name, coll_name = split_namespace(ns)
        infos = list(self.client[db_name].list_collections(filter={"name": coll_name}))
        if not infos:
            return None
        return dict(infos[0].get("options") or {})

    # ===== כתיבה =====

    def insert(self, ns: str, doc: Dict[str, Any]):
        db_name, coll_name = split_namespace(ns)
        if coll_name == INDEX_COLLECTION:
            self._create_index(db_name, doc)
            return
        try:
            self._collection(ns).insert_one(doc)
            self._record_success(db_name)
        except PyMongoError as e:
            self._record_error(db_name, e)

    def update(self, ns: str, filter: Dict[str, Any], doc: Dict[str, Any]):
        """החלפת מסמך שלם לפי פילטר"""
        db_name, _ = split_namespace(ns)
        try:
            self._collection(ns).replace_one(filter, doc)
            self._record_success(db_name)
        except PyMongoError as e:
            self._record_error(db_name, e)

    def remove(self, ns: str, filter: Dict[str, Any]):
        db_name, _ = split_namespace(ns)
        try:
            self._collection(ns).delete_many(filter)
            self._record_success(db_name)
        except PyMongoError as e:
            self._record_error(db_name, e)

    def drop_collection(self, ns: str):
        db_name, coll_name = split_namespace(ns)
        try:
            self.client[db_name].drop_collection(coll_name)
            self._record_success(db_name)
        except PyMongoError as e:
            self._record_error(db_name, e)

    def _create_index(self, db_name: str, spec: Dict[str, Any]):
        # שרתים חדשים לא מקבלים insert ל-system.indexes, מתרגמים ל-createIndexes
        spec = dict(spec)
        _, coll_name = split_namespace(spec.pop("ns", ""))
        command: Dict[str, Any] = {"createIndexes": coll_name, "indexes": [spec]}
        if self.w > 0:
            command["writeConcern"] = {"w": self.w}
        try:
            self.client[db_name].command(command)
            self._record_success(db_name)
        except PyMongoError as e:
            self._record_error(db_name, e)

    # ===== פקודות =====

    def run_command(self, db_name: str, command: Dict[str, Any]) -> Tuple[bool, Dict[str, Any]]:
        """הרצת פקודה. מחזיר (ok, תשובה) במקום לזרוק"""
        try:
            return True, dict(self.client[db_name].command(command))
        except OperationFailure as e:
            return False, dict(e.details or {"errmsg": str(e)})
        except PyMongoError as e:
            return False, {"errmsg": str(e)}

    def get_last_error(self, db_name: str, w: int = 0) -> str:
        """הודעת השגיאה של הכתיבה האחרונה בחיבור (מחרוזת ריקה אם הכל תקין)

        ההמתנה ל-w רפליקות כבר קרתה בזמן הכתיבה, כי כל כתיבה נשלחת עם ה-write concern של החיבור.
        """
        err = self.get_last_error_detailed(db_name, w).get("err")
        return str(err) if err else ""

    def get_last_error_detailed(self, db_name: str, w: int = 0) -> Dict[str, Any]:
        # db_name נשמר בחתימה כי הפקודה הישנה נשלחה למסד מסוים, אבל השגיאה שייכת לחיבור
        err, self._last_error = self._last_error, None
        return err or {"ok": 1.0, "err": None}

    # ===== מצב השרת =====

    def _hello(self) -> Dict[str, Any]:
        return dict(self.client.admin.command("isMaster"))

    def is_primary_writable(self) -> bool:
        try:
            hello = self._hello()
        except PyMongoError as e:
            logger.error(f"isMaster failed: {e}")
            return False
        return bool(hello.get("ismaster") or hello.get("isWritablePrimary"))

    def is_mongos(self) -> bool:
        try:
            return self._hello().get("msg") == "isdbgrid"
        except PyMongoError:
            return False

    def server_version(self) -> Optional[str]:
        ok, info = self.run_command("admin", {"buildinfo": 1})
        if not ok:
            logger.error(f"buildinfo command failed: {info.get('errmsg')}")
            return None
        return info.get("version")

    def close(self):
        self.client.close()
