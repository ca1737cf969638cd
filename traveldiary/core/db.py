from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional

from botocore.exceptions import ClientError
from fastapi import HTTPException

from .aws import ddb
from .errors import Conflict
from .logging import get_logger
from .settings import S

logger = get_logger(__name__)

tbl = ddb.Table(S.app_table)

_BATCH_GET_LIMIT = 100


def _ddb_error(exc: ClientError) -> HTTPException:
    err = exc.response.get("Error", {})
    logger.error("dynamodb_error", code=err.get("Code"), message=err.get("Message"))
    return HTTPException(status_code=500, detail=f"DynamoDB error: {err.get('Message', 'unknown')}")


def _expr_kwargs(
    *,
    condition_expr: Optional[str] = None,
    expr_names: Optional[Dict[str, str]] = None,
    expr_vals: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    if condition_expr:
        kwargs["ConditionExpression"] = condition_expr
    if expr_names:
        kwargs["ExpressionAttributeNames"] = expr_names
    if expr_vals:
        kwargs["ExpressionAttributeValues"] = expr_vals
    return kwargs


def put_item(
    item: Dict[str, Any],
    *,
    condition_expr: Optional[str] = None,
    expr_names: Optional[Dict[str, str]] = None,
    expr_vals: Optional[Dict[str, Any]] = None,
) -> None:
    try:
        tbl.put_item(
            Item=item,
            **_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals),
        )
    except ClientError as exc:
        if exc.response["Error"].get("Code") == "ConditionalCheckFailedException":
            raise Conflict("Conflict / conditional check failed") from exc
        raise _ddb_error(exc) from exc


def update_item(
    *,
    key: Dict[str, Any],
    update_expr: str,
    expr_vals: Optional[Dict[str, Any]] = None,
    expr_names: Optional[Dict[str, str]] = None,
    condition_expr: Optional[str] = None,
    return_values: str = "ALL_NEW",
) -> Dict[str, Any]:
    try:
        resp = tbl.update_item(
            Key=key,
            UpdateExpression=update_expr,
            ReturnValues=return_values,
            **_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals),
        )
        return resp.get("Attributes", {})
    except ClientError as exc:
        if exc.response["Error"].get("Code") == "ConditionalCheckFailedException":
            raise Conflict("Conflict / conditional check failed") from exc
        raise _ddb_error(exc) from exc


def get_item(key: Dict[str, Any], *, consistent: bool = False) -> Optional[Dict[str, Any]]:
    try:
        resp = tbl.get_item(Key=key, ConsistentRead=consistent)
        return resp.get("Item")
    except ClientError as exc:
        raise _ddb_error(exc) from exc


def delete_item(
    key: Dict[str, Any],
    *,
    condition_expr: Optional[str] = None,
    expr_names: Optional[Dict[str, str]] = None,
    expr_vals: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    try:
        resp = tbl.delete_item(
            Key=key,
            ReturnValues="ALL_OLD",
            **_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals),
        )
        return resp.get("Attributes", {})
    except ClientError as exc:
        if exc.response["Error"].get("Code") == "ConditionalCheckFailedException":
            raise Conflict("Conflict / conditional check failed") from exc
        raise _ddb_error(exc) from exc


def query_pages(**kwargs) -> Iterator[List[Dict[str, Any]]]:
    """Yield one page of items per query call, following LastEvaluatedKey."""
    while True:
        try:
            resp = tbl.query(**kwargs)
        except ClientError as exc:
            raise _ddb_error(exc) from exc
        yield resp.get("Items", [])
        lek = resp.get("LastEvaluatedKey")
        if not lek:
            return
        kwargs["ExclusiveStartKey"] = lek


def query_all(**kwargs) -> List[Dict[str, Any]]:
    """Run a query until the partition is exhausted."""
    items: List[Dict[str, Any]] = []
    for page in query_pages(**kwargs):
        items.extend(page)
    return items


def batch_get(keys: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    unique: List[Dict[str, Any]] = []
    seen = set()
    for k in keys:
        marker = (k["PK"], k["SK"])
        if marker not in seen:
            seen.add(marker)
            unique.append(k)

    out: List[Dict[str, Any]] = []
    client = tbl.meta.client
    try:
        for start in range(0, len(unique), _BATCH_GET_LIMIT):
            request = {tbl.name: {"Keys": unique[start:start + _BATCH_GET_LIMIT]}}
            while request:
                resp = client.batch_get_item(RequestItems=request)
                out.extend(resp.get("Responses", {}).get(tbl.name, []))
                request = resp.get("UnprocessedKeys") or {}
    except ClientError as exc:
        raise _ddb_error(exc) from exc
    return out


# -----------------------------
# Transactions
# -----------------------------
def tx_put(
    item: Dict[str, Any],
    *,
    condition_expr: Optional[str] = None,
    expr_names: Optional[Dict[str, str]] = None,
    expr_vals: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body = {"Item": item}
    body.update(_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals))
    return {"Put": body}


def tx_update(
    *,
    key: Dict[str, Any],
    update_expr: str,
    expr_vals: Optional[Dict[str, Any]] = None,
    expr_names: Optional[Dict[str, str]] = None,
    condition_expr: Optional[str] = None,
) -> Dict[str, Any]:
    body = {"Key": key, "UpdateExpression": update_expr}
    body.update(_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals))
    return {"Update": body}


def tx_delete(
    key: Dict[str, Any],
    *,
    condition_expr: Optional[str] = None,
    expr_names: Optional[Dict[str, str]] = None,
    expr_vals: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body = {"Key": key}
    body.update(_expr_kwargs(condition_expr=condition_expr, expr_names=expr_names, expr_vals=expr_vals))
    return {"Delete": body}


def transact(actions: List[Dict[str, Any]]) -> None:
    """
    All-or-nothing write. A cancelled transaction raises Conflict carrying the
    per-item cancellation reasons in request order.
    """
    items = []
    for action in actions:
        (op, body), = action.items()
        items.append({op: dict(body, TableName=tbl.name)})
    try:
        tbl.meta.client.transact_write_items(TransactItems=items)
    except ClientError as exc:
        if exc.response["Error"].get("Code") == "TransactionCanceledException":
            raise Conflict(
                "Conflict / transaction cancelled",
                reasons=exc.response.get("CancellationReasons") or [],
            ) from exc
        raise _ddb_error(exc) from exc


# -----------------------------
# Rendering
# -----------------------------
def plain(value: Any) -> Any:
    """Convert DynamoDB values (Decimal, sets) into JSON-friendly Python."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(plain(v) for v in value)
    return value


def count(item: Optional[Dict[str, Any]], attr: str) -> int:
    if not item:
        return 0
    return max(0, int(item.get(attr) or 0))


def members(item: Optional[Dict[str, Any]], attr: str) -> set:
    if not item:
        return set()
    return set(item.get(attr) or ())
