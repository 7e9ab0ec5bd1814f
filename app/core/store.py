"""Thin document-store layer over DynamoDB tables.

Every helper takes the boto3 ``Table`` to act on so services stay explicit
about which collection they touch. Single-document mutations map to one
atomic ``update_item`` call. Writes spanning two documents go through
``paired_write``, which undoes the first half when the second fails.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from app.core.aws import ddb
from app.core.errors import StoreError
from app.metrics import PARTIAL_WRITE_COMPENSATIONS

logger = logging.getLogger(__name__)

BATCH_GET_MAX_KEYS = 100
LIST_REMOVE_ATTEMPTS = 3


class ConditionFailed(Exception):
    """A conditional write did not apply (missing item or unmet expectation)."""


def _error_message(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Message", "unknown")


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code", "") == "ConditionalCheckFailedException"


def _raise_store_error(exc: ClientError, op: str):
    logger.error("DynamoDB %s failed: %s", op, _error_message(exc))
    raise StoreError("Database error") from exc


def _all_equal(expect: Dict[str, Any]):
    cond = None
    for name, value in expect.items():
        clause = Attr(name).eq(value)
        cond = clause if cond is None else cond & clause
    return cond


def _any_contains(attrs: Iterable[str], needle: str):
    cond = None
    for name in attrs:
        clause = Attr(name).contains(needle)
        cond = clause if cond is None else cond | clause
    return cond


def _exists(key: Dict[str, Any]):
    return Attr(next(iter(key))).exists()


# -----------------------------
# Single items
# -----------------------------
def get_item(table, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        resp = table.get_item(Key=key)
    except ClientError as exc:
        _raise_store_error(exc, "get_item")
    return resp.get("Item")


def put_item(table, item: Dict[str, Any], *, if_absent: Optional[str] = None) -> None:
    kwargs: Dict[str, Any] = {"Item": item}
    if if_absent:
        kwargs["ConditionExpression"] = Attr(if_absent).not_exists()
    try:
        table.put_item(**kwargs)
    except ClientError as exc:
        if _is_condition_failure(exc):
            raise ConditionFailed(f"{if_absent} already exists") from exc
        _raise_store_error(exc, "put_item")


def delete_item(table, key: Dict[str, Any], *, expect: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Delete and return the old document; None when missing or ``expect`` did not match."""
    kwargs: Dict[str, Any] = {"Key": key, "ReturnValues": "ALL_OLD"}
    if expect:
        kwargs["ConditionExpression"] = _all_equal(expect)
    try:
        resp = table.delete_item(**kwargs)
    except ClientError as exc:
        if _is_condition_failure(exc):
            return None
        _raise_store_error(exc, "delete_item")
    return resp.get("Attributes") or None


def _update(
    table,
    key: Dict[str, Any],
    update_expr: str,
    names: Dict[str, str],
    values: Optional[Dict[str, Any]],
    *,
    condition=None,
) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "Key": key,
        "UpdateExpression": update_expr,
        "ExpressionAttributeNames": names,
        "ConditionExpression": condition if condition is not None else _exists(key),
        "ReturnValues": "ALL_NEW",
    }
    if values:
        kwargs["ExpressionAttributeValues"] = values
    try:
        resp = table.update_item(**kwargs)
    except ClientError as exc:
        if _is_condition_failure(exc):
            raise ConditionFailed(f"update of {key} did not apply") from exc
        _raise_store_error(exc, "update_item")
    return resp.get("Attributes", {})


def update_fields(table, key: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    if not fields:
        raise ValueError("no fields to update")
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    parts: List[str] = []
    for i, (name, value) in enumerate(fields.items()):
        names[f"#f{i}"] = name
        values[f":x{i}"] = value
        parts.append(f"#f{i} = :x{i}")
    return _update(table, key, "SET " + ", ".join(parts), names, values)


def add_to_set(table, key: Dict[str, Any], attr: str, members: Iterable[str]) -> Dict[str, Any]:
    return _update(table, key, "ADD #a :s", {"#a": attr}, {":s": set(members)})


def remove_from_set(table, key: Dict[str, Any], attr: str, members: Iterable[str]) -> Dict[str, Any]:
    return _update(table, key, "DELETE #a :s", {"#a": attr}, {":s": set(members)})


def append_to_list(table, key: Dict[str, Any], attr: str, value: Any) -> Dict[str, Any]:
    return _update(
        table,
        key,
        "SET #a = list_append(if_not_exists(#a, :empty), :item)",
        {"#a": attr},
        {":empty": [], ":item": [value]},
    )


def remove_from_list(table, key: Dict[str, Any], attr: str, value: Any) -> Optional[Dict[str, Any]]:
    """Pull ``value`` from a list attribute.

    DynamoDB removes list elements by index only, so the index is read first
    and the REMOVE is conditioned on the element still sitting there.
    """
    for _ in range(LIST_REMOVE_ATTEMPTS):
        item = get_item(table, key)
        if not item:
            return None
        current = item.get(attr) or []
        if value not in current:
            return item
        idx = current.index(value)
        try:
            return _update(
                table,
                key,
                f"REMOVE #a[{idx}]",
                {"#a": attr},
                None,
                condition=Attr(f"{attr}[{idx}]").eq(value),
            )
        except ConditionFailed:
            continue
    raise ConditionFailed(f"could not remove {value!r} from {attr}")


# -----------------------------
# Queries
# -----------------------------
def _query_kwargs(
    index: Optional[str],
    partition: Tuple[str, Any],
    where: Optional[Dict[str, Any]],
    newest_first: bool,
) -> Dict[str, Any]:
    name, value = partition
    kwargs: Dict[str, Any] = {
        "KeyConditionExpression": Key(name).eq(value),
        "ScanIndexForward": not newest_first,
    }
    if index:
        kwargs["IndexName"] = index
    if where:
        kwargs["FilterExpression"] = _all_equal(where)
    return kwargs


def _query(table, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return table.query(**kwargs)
    except ClientError as exc:
        _raise_store_error(exc, "query")


def query_page(
    table,
    *,
    index: Optional[str],
    partition: Tuple[str, Any],
    skip: int,
    limit: int,
    where: Optional[Dict[str, Any]] = None,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
    """Offset page over an index: skip ``skip`` items, return up to ``limit``."""
    kwargs = _query_kwargs(index, partition, where, newest_first)
    kwargs["Limit"] = skip + limit
    out: List[Dict[str, Any]] = []
    to_skip = skip
    while True:
        resp = _query(table, kwargs)
        items = resp.get("Items", [])
        if to_skip:
            dropped = min(to_skip, len(items))
            items = items[dropped:]
            to_skip -= dropped
        out.extend(items[: limit - len(out)])
        lek = resp.get("LastEvaluatedKey")
        if len(out) >= limit or not lek:
            return out
        kwargs["ExclusiveStartKey"] = lek


def query_all(
    table,
    *,
    index: Optional[str],
    partition: Tuple[str, Any],
    where: Optional[Dict[str, Any]] = None,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
    kwargs = _query_kwargs(index, partition, where, newest_first)
    out: List[Dict[str, Any]] = []
    while True:
        resp = _query(table, kwargs)
        out.extend(resp.get("Items", []))
        lek = resp.get("LastEvaluatedKey")
        if not lek:
            return out
        kwargs["ExclusiveStartKey"] = lek


def count_items(
    table,
    *,
    index: Optional[str],
    partition: Tuple[str, Any],
    where: Optional[Dict[str, Any]] = None,
) -> int:
    kwargs = _query_kwargs(index, partition, where, newest_first=True)
    kwargs["Select"] = "COUNT"
    total = 0
    while True:
        resp = _query(table, kwargs)
        total += int(resp.get("Count", 0))
        lek = resp.get("LastEvaluatedKey")
        if not lek:
            return total
        kwargs["ExclusiveStartKey"] = lek


def batch_get(table, key_name: str, ids: Iterable[Optional[str]]) -> Dict[str, Dict[str, Any]]:
    wanted = list(dict.fromkeys(i for i in ids if i))
    found: Dict[str, Dict[str, Any]] = {}
    for start in range(0, len(wanted), BATCH_GET_MAX_KEYS):
        chunk = wanted[start:start + BATCH_GET_MAX_KEYS]
        request: Optional[Dict[str, Any]] = {table.name: {"Keys": [{key_name: i} for i in chunk]}}
        while request:
            try:
                resp = ddb.batch_get_item(RequestItems=request)
            except ClientError as exc:
                _raise_store_error(exc, "batch_get_item")
            for item in resp.get("Responses", {}).get(table.name, []):
                found[item[key_name]] = item
            request = resp.get("UnprocessedKeys") or None
    return found


def scan_matching(table, attrs: Iterable[str], needle: str) -> List[Dict[str, Any]]:
    """Full-table scan for items where any of ``attrs`` contains ``needle``."""
    kwargs: Dict[str, Any] = {"FilterExpression": _any_contains(attrs, needle)}
    out: List[Dict[str, Any]] = []
    while True:
        try:
            resp = table.scan(**kwargs)
        except ClientError as exc:
            _raise_store_error(exc, "scan")
        out.extend(resp.get("Items", []))
        lek = resp.get("LastEvaluatedKey")
        if not lek:
            return out
        kwargs["ExclusiveStartKey"] = lek


# -----------------------------
# Two-document writes
# -----------------------------
def paired_write(second: Callable[[], Any], undo: Callable[[], Any], *, what: str) -> Any:
    """Run the second half of a two-document write; undo the first half if it fails.

    The original error always propagates. A failed undo leaves the two
    documents out of sync and is logged for reconciliation.
    """
    try:
        return second()
    except Exception:
        try:
            undo()
        except Exception:
            logger.exception("Compensation for %s failed; documents left inconsistent", what)
            PARTIAL_WRITE_COMPENSATIONS.labels(what=what, outcome="failed").inc()
        else:
            logger.warning("Second write of %s failed; first write undone", what)
            PARTIAL_WRITE_COMPENSATIONS.labels(what=what, outcome="undone").inc()
        raise
