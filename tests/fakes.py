"""
In-memory stand-in for the single DynamoDB table, covering the expression
subset the services use. Install with ``patch.object(db, "tbl", FakeTable())``.
"""
from __future__ import annotations

import copy
import re
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

_MISSING = object()
_SECTIONS = re.compile(r"\b(SET|ADD|DELETE|REMOVE)\b")
_COMPARE = re.compile(r"^(\S+)\s*(<>|>=|<=|=|>|<)\s*(\S+)$")
_FUNC = re.compile(r"^(attribute_exists|attribute_not_exists|contains)\((.*)\)$")


def client_error(code: str, message: str = "", **extra) -> ClientError:
    response: Dict[str, Any] = {"Error": {"Code": code, "Message": message}}
    response.update(extra)
    return ClientError(response, "FakeOperation")


def _key_of(item: Dict[str, Any]) -> Tuple[str, str]:
    return item["PK"], item["SK"]


class _Expr:
    def __init__(self, names: Optional[Dict[str, str]], vals: Optional[Dict[str, Any]], *exprs: Optional[str]):
        self.names = names or {}
        self.vals = vals or {}
        text = " ".join(e for e in exprs if e)
        used_names = set(re.findall(r"#\w+", text))
        used_vals = set(re.findall(r":\w+", text))
        unused = (set(self.names) - used_names) | (set(self.vals) - used_vals)
        if unused:
            raise client_error("ValidationException", f"Unused expression attributes: {sorted(unused)}")
        undefined = (used_names - set(self.names)) | (used_vals - set(self.vals))
        if undefined:
            raise client_error("ValidationException", f"Undefined expression attributes: {sorted(undefined)}")

    def path(self, token: str) -> List[str]:
        return [self.names.get(p, p) for p in token.strip().split(".")]

    def operand(self, token: str, item: Dict[str, Any]) -> Any:
        token = token.strip()
        if token.startswith(":"):
            return copy.deepcopy(self.vals[token])
        return _get(item, self.path(token))


def _get(item: Dict[str, Any], parts: List[str]) -> Any:
    cur: Any = item
    for p in parts:
        if not isinstance(cur, dict) or p not in cur:
            return _MISSING
        cur = cur[p]
    return cur


def _set(item: Dict[str, Any], parts: List[str], value: Any) -> None:
    cur = item
    for p in parts[:-1]:
        if not isinstance(cur.get(p), dict):
            raise client_error("ValidationException", "The document path provided in the update expression is invalid for update")
        cur = cur[p]
    cur[parts[-1]] = value


def _remove(item: Dict[str, Any], parts: List[str]) -> None:
    cur = item
    for p in parts[:-1]:
        cur = cur.get(p)
        if not isinstance(cur, dict):
            return
    cur.pop(parts[-1], None)


def _check_no_empty_sets(item: Dict[str, Any]) -> None:
    for value in item.values():
        if isinstance(value, (set, frozenset)) and not value:
            raise client_error("ValidationException", "An string set may not be empty")
        if isinstance(value, dict):
            _check_no_empty_sets(value)


def _condition_holds(expr: _Expr, condition: Optional[str], item: Optional[Dict[str, Any]]) -> bool:
    if not condition:
        return True
    current = item or {}
    return all(_clause(expr, clause.strip(), current) for clause in condition.split(" AND "))


def _clause(expr: _Expr, clause: str, item: Dict[str, Any]) -> bool:
    if clause.startswith("NOT "):
        return not _clause(expr, clause[4:].strip(), item)
    m = _FUNC.match(clause)
    if m:
        fn, args = m.group(1), [a.strip() for a in m.group(2).split(",")]
        value = expr.operand(args[0], item)
        if fn == "attribute_exists":
            return value is not _MISSING
        if fn == "attribute_not_exists":
            return value is _MISSING
        if value is _MISSING:
            return False
        return expr.operand(args[1], item) in value
    m = _COMPARE.match(clause)
    if not m:
        raise client_error("ValidationException", f"Unsupported condition: {clause}")
    left, op, right = expr.operand(m.group(1), item), m.group(2), expr.operand(m.group(3), item)
    if left is _MISSING or right is _MISSING:
        return False
    return {
        "=": lambda: left == right,
        "<>": lambda: left != right,
        ">": lambda: left > right,
        "<": lambda: left < right,
        ">=": lambda: left >= right,
        "<=": lambda: left <= right,
    }[op]()


def _apply_update(expr: _Expr, update_expr: str, item: Dict[str, Any]) -> None:
    parts = _SECTIONS.split(update_expr)
    for i in range(1, len(parts), 2):
        action, body = parts[i], parts[i + 1]
        for clause in (c.strip() for c in body.split(",")):
            if not clause:
                continue
            if action == "SET":
                lhs, rhs = (s.strip() for s in clause.split("=", 1))
                _set(item, expr.path(lhs), _evaluate(expr, rhs, item))
            elif action == "ADD":
                target, value_token = clause.split()
                path, value = expr.path(target), expr.operand(value_token, item)
                current = _get(item, path)
                if isinstance(value, set):
                    _set(item, path, (set() if current is _MISSING else set(current)) | value)
                else:
                    _set(item, path, (0 if current is _MISSING else current) + value)
            elif action == "DELETE":
                target, value_token = clause.split()
                path, value = expr.path(target), expr.operand(value_token, item)
                current = _get(item, path)
                if current is _MISSING:
                    continue
                remaining = set(current) - value
                if remaining:
                    _set(item, path, remaining)
                else:
                    _remove(item, path)
            else:
                _remove(item, expr.path(clause))


def _evaluate(expr: _Expr, rhs: str, item: Dict[str, Any]) -> Any:
    for op in (" + ", " - "):
        if op in rhs:
            a, b = (expr.operand(t, item) for t in rhs.split(op, 1))
            if a is _MISSING or b is _MISSING:
                raise client_error("ValidationException", "The provided expression refers to an attribute that does not exist in the item")
            return a + b if op == " + " else a - b
    value = expr.operand(rhs, item)
    if value is _MISSING:
        raise client_error("ValidationException", "The provided expression refers to an attribute that does not exist in the item")
    return value


def _key_matches(cond, item: Dict[str, Any]) -> bool:
    parsed = cond.get_expression()
    op, values = parsed["operator"], parsed["values"]
    if op == "AND":
        return all(_key_matches(v, item) for v in values)
    name = values[0].name
    if name not in item:
        return False
    if op == "=":
        return item[name] == values[1]
    if op == "begins_with":
        return str(item[name]).startswith(values[1])
    raise NotImplementedError(op)


class FakeTable:
    def __init__(self, name: str = "travel_diary_test"):
        self.name = name
        self.items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.meta = SimpleNamespace(client=_FakeClient(self))
        self.query_calls = 0

    # -- helpers for tests --
    def seed(self, item: Dict[str, Any]) -> Dict[str, Any]:
        self.items[_key_of(item)] = copy.deepcopy(item)
        return item

    def item(self, pk: str, sk: str = "META") -> Optional[Dict[str, Any]]:
        found = self.items.get((pk, sk))
        return copy.deepcopy(found) if found is not None else None

    # -- boto3 Table surface --
    def get_item(self, Key, ConsistentRead=False):
        found = self.items.get(_key_of(Key))
        return {"Item": copy.deepcopy(found)} if found is not None else {}

    def put_item(self, Item, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):
        expr = _Expr(ExpressionAttributeNames, ExpressionAttributeValues, ConditionExpression)
        if not _condition_holds(expr, ConditionExpression, self.items.get(_key_of(Item))):
            raise client_error("ConditionalCheckFailedException", "The conditional request failed")
        _check_no_empty_sets(Item)
        self.items[_key_of(Item)] = copy.deepcopy(Item)
        return {}

    def update_item(
        self,
        Key,
        UpdateExpression,
        ReturnValues="NONE",
        ConditionExpression=None,
        ExpressionAttributeNames=None,
        ExpressionAttributeValues=None,
    ):
        expr = _Expr(ExpressionAttributeNames, ExpressionAttributeValues, UpdateExpression, ConditionExpression)
        existing = self.items.get(_key_of(Key))
        if not _condition_holds(expr, ConditionExpression, existing):
            raise client_error("ConditionalCheckFailedException", "The conditional request failed")
        new = copy.deepcopy(existing) if existing is not None else dict(Key)
        _apply_update(expr, UpdateExpression, new)
        self.items[_key_of(Key)] = new
        if ReturnValues == "ALL_NEW":
            return {"Attributes": copy.deepcopy(new)}
        if ReturnValues == "ALL_OLD":
            return {"Attributes": copy.deepcopy(existing)} if existing is not None else {}
        return {}

    def delete_item(self, Key, ReturnValues="NONE", ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):
        expr = _Expr(ExpressionAttributeNames, ExpressionAttributeValues, ConditionExpression)
        existing = self.items.get(_key_of(Key))
        if not _condition_holds(expr, ConditionExpression, existing):
            raise client_error("ConditionalCheckFailedException", "The conditional request failed")
        self.items.pop(_key_of(Key), None)
        if ReturnValues == "ALL_OLD" and existing is not None:
            return {"Attributes": copy.deepcopy(existing)}
        return {}

    def query(self, KeyConditionExpression, IndexName=None, ScanIndexForward=True, ExclusiveStartKey=None, Limit=None):
        self.query_calls += 1
        pk_attr, sk_attr = (f"{IndexName}PK", f"{IndexName}SK") if IndexName else ("PK", "SK")
        matched = [
            copy.deepcopy(it)
            for it in self.items.values()
            if pk_attr in it and _key_matches(KeyConditionExpression, it)
        ]
        matched.sort(key=lambda it: str(it.get(sk_attr, "")), reverse=not ScanIndexForward)
        start = 0
        if ExclusiveStartKey:
            last = _key_of(ExclusiveStartKey)
            start = next(i for i, it in enumerate(matched) if _key_of(it) == last) + 1
        end = start + Limit if Limit else len(matched)
        page = matched[start:end]
        resp = {"Items": page, "Count": len(page)}
        if end < len(matched):
            resp["LastEvaluatedKey"] = {"PK": page[-1]["PK"], "SK": page[-1]["SK"]}
        return resp


class _FakeClient:
    def __init__(self, table: FakeTable):
        self._table = table

    def batch_get_item(self, RequestItems):
        out: Dict[str, List[Dict[str, Any]]] = {}
        for name, req in RequestItems.items():
            found = [self._table.items.get(_key_of(k)) for k in req["Keys"]]
            out[name] = [copy.deepcopy(it) for it in found if it is not None]
        return {"Responses": out, "UnprocessedKeys": {}}

    def transact_write_items(self, TransactItems):
        staged = {k: copy.deepcopy(v) for k, v in self._table.items.items()}
        seen = set()
        reasons = []
        plans = []
        for entry in TransactItems:
            (op, body), = entry.items()
            if body.get("TableName") != self._table.name:
                raise client_error("ResourceNotFoundException", "Requested resource not found")
            item_key = _key_of(body["Item"] if op == "Put" else body["Key"])
            if item_key in seen:
                raise client_error("ValidationException", "Transaction request cannot include multiple operations on one item")
            seen.add(item_key)
            expr = _Expr(
                body.get("ExpressionAttributeNames"),
                body.get("ExpressionAttributeValues"),
                body.get("UpdateExpression"),
                body.get("ConditionExpression"),
            )
            ok = _condition_holds(expr, body.get("ConditionExpression"), staged.get(item_key))
            reasons.append({"Code": "None"} if ok else {"Code": "ConditionalCheckFailed", "Message": "The conditional request failed"})
            plans.append((op, body, item_key, expr))
        if any(r["Code"] != "None" for r in reasons):
            raise client_error(
                "TransactionCanceledException",
                "Transaction cancelled",
                CancellationReasons=reasons,
            )
        for op, body, item_key, expr in plans:
            if op == "Put":
                _check_no_empty_sets(body["Item"])
                staged[item_key] = copy.deepcopy(body["Item"])
            elif op == "Update":
                new = staged.get(item_key) or dict(body["Key"])
                _apply_update(expr, body["UpdateExpression"], new)
                staged[item_key] = new
            elif op == "Delete":
                staged.pop(item_key, None)
        self._table.items = staged
        return {}


# -----------------------------
# Builders
# -----------------------------
def user_item(user_id: str, username: str, *, account_type: str = "personal", **extra) -> Dict[str, Any]:
    item = {
        "PK": f"USER#{user_id}",
        "SK": "META",
        "entity": "user",
        "id": user_id,
        "username": username,
        "username_lc": username.lower(),
        "email": f"{username.lower()}@example.com",
        "full_name": username.title(),
        "full_name_lc": username.lower(),
        "account_type": account_type,
        "followers_count": 0,
        "following_count": 0,
        "posts_count": 0,
        "GSI3PK": "USERS",
        "GSI3SK": username.lower(),
    }
    item.update(extra)
    return item


def recording_push(success: bool = True) -> MagicMock:
    push = MagicMock()
    push.send.return_value = {"token": "t", "success": success, "error": None}
    push.send_multicast.side_effect = lambda tokens, *a, **k: {
        "success_count": len(tokens) if success else 0,
        "results": [],
    }
    return push


def fake_store() -> MagicMock:
    store = MagicMock()
    counter = {"n": 0}

    def _upload(payload, folder):
        counter["n"] += 1
        kind = "video" if (payload[1] or "").startswith("video/") else "image"
        media_id = f"{folder}/obj{counter['n']}"
        return {"type": kind, "id": media_id, "url": f"https://cdn.test/{media_id}", "thumbnail_url": None, "duration": None}

    store.upload_many.side_effect = lambda payloads, folder: [_upload(p, folder) for p in payloads]
    store.upload_image.side_effect = lambda data, folder, ct="image/jpeg": {
        "id": f"{folder}/img",
        "url": f"https://cdn.test/{folder}/img",
    }
    store.delete.return_value = True
    return store
