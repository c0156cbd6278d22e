"""
התאמת מסמך לפילטר בסגנון שאילתת MongoDB, בצד הלקוח.

משמש לחלון הזמנים של ה-oplog ולפילטרים שהמפעיל מעביר ב-command line.
תומך בשדות עם נקודות, $eq/$ne/$gt/$gte/$lt/$lte/$in/$nin/$exists/$not ו-$and/$or/$nor.
"""

import operator
from typing import Any, Dict, List, Optional

_MISSING = object()

_COMPARISONS = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


class UnsupportedQueryError(ValueError):
    pass


def _resolve(doc: Any, path: str) -> Any:
    value = doc
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def _candidates(value: Any) -> List[Any]:
    # שדה מערך מתאים אם המערך עצמו או אחד האיברים מתאים
    if isinstance(value, list):
        return [value] + value
    return [value]


def _compare(op, value: Any, target: Any) -> bool:
    if value is _MISSING:
        return False
    for candidate in _candidates(value):
        try:
            if op(candidate, target):
                return True
        except TypeError:
            continue
    return False


def _equals(value: Any, target: Any) -> bool:
    if value is _MISSING:
        return target is None
    return any(candidate == target for candidate in _candidates(value))


def _is_operator_doc(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(k.startswith("$") for k in condition)


def _match_operators(value: Any, condition: Dict[str, Any]) -> bool:
    for op_name, target in condition.items():
        if op_name == "$eq":
            ok = _equals(value, target)
        elif op_name == "$ne":
            ok = not _equals(value, target)
        elif op_name in _COMPARISONS:
            ok = _compare(_COMPARISONS[op_name], value, target)
        elif op_name == "$in":
            ok = any(_equals(value, t) for t in target)
        elif op_name == "$nin":
            ok = not any(_equals(value, t) for t in target)
        elif op_name == "$exists":
            ok = (value is not _MISSING) == bool(target)
        elif op_name == "$not":
            ok = not _match_condition(value, target)
        else:
            raise UnsupportedQueryError(f"Unsupported query operator: {op_name}")
        if not ok:
            return False
    return True


def _match_condition(value: Any, condition: Any) -> bool:
    if _is_operator_doc(condition):
        return _match_operators(value, condition)
    return _equals(value, condition)


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """האם המסמך עונה על השאילתה. שאילתה ריקה או None מתאימה לכל מסמך"""
    if not query:
        return True
    for key, condition in query.items():
        if key == "$and":
            ok = all(matches(doc, sub) for sub in condition)
        elif key == "$or":
            ok = any(matches(doc, sub) for sub in condition)
        elif key == "$nor":
            ok = not any(matches(doc, sub) for sub in condition)
        elif key.startswith("$"):
            raise UnsupportedQueryError(f"Unsupported top-level operator: {key}")
        else:
            ok = _match_condition(_resolve(doc, key), condition)
        if not ok:
            return False
    return True


_FIELD_OPERATORS = {"$eq", "$ne", "$in", "$nin", "$exists", "$not"} | set(_COMPARISONS)


def _validate_condition(condition: Any):
    if not _is_operator_doc(condition):
        return
    for op_name, target in condition.items():
        if op_name not in _FIELD_OPERATORS:
            raise UnsupportedQueryError(f"Unsupported query operator: {op_name}")
        if op_name in ("$in", "$nin") and not isinstance(target, list):
            raise UnsupportedQueryError(f"{op_name} needs an array")
        if op_name == "$not":
            _validate_condition(target)


def validate(query: Optional[Dict[str, Any]]):
    """בדיקה מוקדמת שהשאילתה משתמשת רק באופרטורים נתמכים"""
    if not query:
        return
    if not isinstance(query, dict):
        raise UnsupportedQueryError("Query must be a document")
    for key, condition in query.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(condition, list):
                raise UnsupportedQueryError(f"{key} needs an array")
            for sub in condition:
                validate(sub)
        elif key.startswith("$"):
            raise UnsupportedQueryError(f"Unsupported top-level operator: {key}")
        else:
            _validate_condition(condition)
