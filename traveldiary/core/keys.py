from __future__ import annotations

import uuid
from typing import Dict

from .time import now_ms

META = "META"
USERS_INDEX_PK = "USERS"


def new_id(prefix: str) -> str:
    """Time-ordered id: lexical order of ids follows creation order."""
    return f"{prefix}_{now_ms():012x}{uuid.uuid4().hex[:12]}"


def key(pk: str, sk: str = META) -> Dict[str, str]:
    return {"PK": pk, "SK": sk}


# -----------------------------
# Partition keys
# -----------------------------
def pk_user(user_id: str) -> str:
    return f"USER#{user_id}"


def pk_username(username: str) -> str:
    return f"USERNAME#{username.lower()}"


def pk_email(email: str) -> str:
    return f"EMAIL#{email.lower()}"


def pk_post(post_id: str) -> str:
    return f"POST#{post_id}"


def pk_comment(comment_id: str) -> str:
    return f"COMMENT#{comment_id}"


def pk_story(story_id: str) -> str:
    return f"STORY#{story_id}"


def pk_chat(chat_id: str) -> str:
    return f"CHAT#{chat_id}"


def pk_mail(mail_id: str) -> str:
    return f"MAIL#{mail_id}"


def pk_notif(user_id: str) -> str:
    return f"NOTIF#{user_id}"


# -----------------------------
# Sort keys / index keys
# -----------------------------
def sk_chat_ref(chat_id: str) -> str:
    return f"CHAT#{chat_id}"


def sk_message(message_id: str) -> str:
    return f"MSG#{message_id}"


def sk_notif(notif_id: str) -> str:
    return f"N#{notif_id}"


def gsi_author_posts(user_id: str) -> str:
    return f"AUTHOR#{user_id}"


def gsi_root_comments(post_id: str) -> str:
    return f"POST#{post_id}#ROOTS"


def gsi_replies(comment_id: str) -> str:
    return f"COMMENT#{comment_id}#REPLIES"


def gsi_user_stories(user_id: str) -> str:
    return f"STORIES#{user_id}"


def gsi_inbox(user_id: str) -> str:
    return f"INBOX#{user_id}"


def gsi_sent(user_id: str) -> str:
    return f"SENT#{user_id}"


def gsi_mail_thread(mail_id: str) -> str:
    return f"MAILTHREAD#{mail_id}"
