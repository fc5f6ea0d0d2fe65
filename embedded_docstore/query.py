from __future__ import annotations
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ValidationError

Query = Mapping[str, Any]
Predicate = Callable[[Dict[str, Any]], bool]


def is_op_dict(v: Any) -> bool:
    return isinstance(v, Mapping) and bool(v) and all(isinstance(k, str) and k.startswith("$") for k in v)


def _compare(op: str, val: Any, arg: Any) -> bool:
    try:
        if op == "$gt":
            return val > arg
        if op == "$gte":
            return val >= arg
        if op == "$lt":
            return val < arg
        return val <= arg
    except TypeError:
        # None vs int, str vs int: never matches
        return False


def _match_ops(val: Any, ops: Mapping[str, Any]) -> bool:
    for op, arg in ops.items():
        if op == "$eq":
            if val != arg:
                return False
        elif op == "$ne":
            if val == arg:
                return False
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            if not _compare(op, val, arg):
                return False
        elif op == "$in":
            if val not in arg:
                return False
        elif op == "$nin":
            if val in arg:
                return False
        elif op == "$contains":
            if isinstance(val, list):
                if arg not in val:
                    return False
            elif isinstance(val, str):
                if str(arg) not in val:
                    return False
            else:
                return False
        else:
            raise ValidationError(f"unsupported query operator: {op}")
    return True


def matches(obj: Mapping[str, Any], query: Query) -> bool:
    """
    Evaluate a query against a record.

    Supports:
      - equality on scalars: {"name": "Ronak"}
      - nested sub-documents: {"address": {"city": "Wien"}}
      - operators: $eq/$ne/$gt/$gte/$lt/$lte/$in/$nin
      - $contains for list membership or substring
      - $or / $and at any document level: {"$or": [{...}, {...}]}
    """
    for k, v in query.items():
        if k == "$or":
            if not any(matches(obj, sub) for sub in v):
                return False
            continue
        if k == "$and":
            if not all(matches(obj, sub) for sub in v):
                return False
            continue
        if k.startswith("$"):
            raise ValidationError(f"unsupported top-level operator: {k}")
        if is_op_dict(v):
            if not _match_ops(obj.get(k), v):
                return False
        elif isinstance(v, Mapping):
            sub = obj.get(k)
            if not isinstance(sub, Mapping):
                return False
            if not matches(sub, v):
                return False
        else:
            if obj.get(k) != v:
                return False
    return True


def as_predicate(query: Union[Query, Predicate, None]) -> Predicate:
    """Accept either a callable or a query mapping; None matches everything."""
    if query is None:
        return lambda _rec: True
    if callable(query):
        return query
    if isinstance(query, Mapping):
        q = query
        return lambda rec: matches(rec, q)
    raise ValidationError(f"query must be a mapping or a callable, got {type(query).__name__}")


def extract_at_path(obj: Mapping[str, Any], path: str) -> Any:
    cur: Any = obj
    for key in (p for p in path.split("/") if p):
        if not isinstance(cur, Mapping) or key not in cur:
            return None
        cur = cur[key]
    return cur


def sort_key(v: Any) -> Tuple[str, Any]:
    # Order across types: null < bool/number < string < other
    if v is None:
        return ("0", "")
    if isinstance(v, (int, float)):
        # int and float compare exactly; float() would overflow big ints
        return ("1", v)
    if isinstance(v, str):
        return ("2", v)
    return ("3", json.dumps(v, sort_keys=True, ensure_ascii=False))


def sort_records(items: List[Tuple[int, Dict[str, Any]]], order_by: List[Tuple[str, str]]) -> None:
    """Stable multi-key sort in place; order_by is [(path, "asc"|"desc"), ...]."""
    for path, direction in reversed(order_by):
        direction = str(direction).lower()
        if direction not in ("asc", "desc"):
            raise ValidationError(f"sort direction must be 'asc' or 'desc', got {direction!r}")
        items.sort(key=lambda item: sort_key(extract_at_path(item[1], path)), reverse=(direction == "desc"))


def project(obj: Mapping[str, Any], fields: Optional[List[str]]) -> Dict[str, Any]:
    if fields is None:
        return dict(obj)
    return {f: obj[f] for f in fields if f in obj}
