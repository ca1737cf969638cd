"""
Like/dislike toggles shared by posts and comments.

A target item carries two string sets (``likes``, ``dislikes``) and their
counters. Every toggle is exactly one of three transitions, each applied as a
single conditional UpdateItem that edits the set and its counter together:

    remove  the actor already holds this reaction -> drop it
    swap    the actor holds the opposite reaction -> move it across
    add     the actor holds neither               -> add it

The condition pins the state the transition was chosen from; if another
request changed it in between, the update fails and the toggle is re-planned
from a fresh read.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from traveldiary.core import db
from traveldiary.core.errors import Conflict, NotFound, Validation

LIKE = "like"
DISLIKE = "dislike"

_SETS = {LIKE: ("likes", "likes_count"), DISLIKE: ("dislikes", "dislikes_count")}
_OPPOSITE = {LIKE: DISLIKE, DISLIKE: LIKE}

REMOVE = "remove"
SWAP = "swap"
ADD = "add"

_ATTEMPTS = 5


def current_reaction(item: Dict[str, Any], user_id: str) -> Optional[str]:
    if user_id in db.members(item, "likes"):
        return LIKE
    if user_id in db.members(item, "dislikes"):
        return DISLIKE
    return None


def next_state(current: Optional[str], kind: str) -> Tuple[str, Optional[str]]:
    """(transition, resulting reaction) for toggling ``kind`` from ``current``."""
    if kind not in _SETS:
        raise Validation(f"Unknown reaction: {kind}")
    if current == kind:
        return REMOVE, None
    if current == _OPPOSITE[kind]:
        return SWAP, kind
    return ADD, kind


def _update_args(transition: str, kind: str, user_id: str) -> Dict[str, Any]:
    own, own_count = _SETS[kind]
    other, other_count = _SETS[_OPPOSITE[kind]]
    if transition == REMOVE:
        return dict(
            update_expr="DELETE #p :us ADD #pc :neg",
            expr_names={"#p": own, "#pc": own_count},
            expr_vals={":us": {user_id}, ":u": user_id, ":neg": -1},
            condition_expr="attribute_exists(PK) AND contains(#p, :u)",
        )
    if transition == SWAP:
        return dict(
            update_expr="ADD #p :us, #pc :one, #oc :neg DELETE #o :us",
            expr_names={"#p": own, "#pc": own_count, "#o": other, "#oc": other_count},
            expr_vals={":us": {user_id}, ":u": user_id, ":one": 1, ":neg": -1},
            condition_expr="attribute_exists(PK) AND contains(#o, :u) AND NOT contains(#p, :u)",
        )
    return dict(
        update_expr="ADD #p :us, #pc :one",
        expr_names={"#p": own, "#pc": own_count, "#o": other},
        expr_vals={":us": {user_id}, ":u": user_id, ":one": 1},
        condition_expr="attribute_exists(PK) AND NOT contains(#p, :u) AND NOT contains(#o, :u)",
    )


def toggle(item_key: Dict[str, Any], user_id: str, kind: str, *, missing: str = "Not found") -> Tuple[Dict[str, Any], Optional[str], Optional[str]]:
    """
    Toggle ``kind`` for ``user_id`` on the item at ``item_key``.

    Returns (updated item, previous reaction, resulting reaction).
    """
    for _ in range(_ATTEMPTS):
        item = db.get_item(item_key, consistent=True)
        if not item or item.get("is_deleted"):
            raise NotFound(missing)
        before = current_reaction(item, user_id)
        transition, after = next_state(before, kind)
        try:
            updated = db.update_item(key=item_key, **_update_args(transition, kind, user_id))
        except Conflict:
            continue
        return updated, before, after
    raise Conflict("Reaction changed concurrently, please retry")


def reaction_view(item: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
    state = current_reaction(item, user_id) if user_id else None
    return {
        "likes_count": db.count(item, "likes_count"),
        "dislikes_count": db.count(item, "dislikes_count"),
        "has_liked": state == LIKE,
        "has_disliked": state == DISLIKE,
    }
