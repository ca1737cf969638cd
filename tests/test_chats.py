import itertools
import unittest
from unittest.mock import patch

from fastapi import HTTPException

from fakes import FakeTable, fake_store, recording_push, user_item
from traveldiary.core import db, keys
from traveldiary.services import chats
from traveldiary.services.notifications import Fanout


class ChatsTestCase(unittest.TestCase):
    def setUp(self):
        self.table = FakeTable()
        mutual = {"followers": {"u_b"}, "following": {"u_b"}, "followers_count": 1, "following_count": 1}
        self.table.seed(user_item("u_a", "alice", fcm_token="tok-a", **mutual))
        self.table.seed(user_item(
            "u_b", "bob", fcm_token="tok-b",
            followers={"u_a"}, following={"u_a"}, followers_count=1, following_count=1,
        ))
        self.table.seed(user_item("u_c", "carol", followers={"u_a"}, followers_count=1))
        self.table.seed(user_item("u_biz", "travelco", account_type="business"))
        clock = itertools.count(1_700_000_000_000)
        for patcher in (
            patch.object(db, "tbl", self.table),
            patch.object(keys, "now_ms", side_effect=lambda: next(clock)),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)
        self.push = recording_push()
        self.fanout = Fanout(self.push)
        self.store = fake_store()

    def user(self, user_id):
        return self.table.item(f"USER#{user_id}")

    def send(self, sender_id, chat_id, text=None, **kwargs):
        kwargs.setdefault("payload", None)
        kwargs.setdefault("shared_post_id", None)
        return chats.send_message(
            self.user(sender_id), chat_id, text=text, store=self.store, fanout=self.fanout, **kwargs
        )


class TestGetOrCreate(ChatsTestCase):
    def test_chat_id_is_order_independent(self):
        self.assertEqual(chats.chat_id_for("u_a", "u_b"), chats.chat_id_for("u_b", "u_a"))

    def test_created_once_for_both_directions(self):
        first = chats.get_or_create_chat(self.user("u_a"), "u_b")
        second = chats.get_or_create_chat(self.user("u_b"), "u_a")

        self.assertEqual(first["id"], second["id"])
        chat_items = [it for it in self.table.items.values() if it.get("entity") == "chat"]
        self.assertEqual(len(chat_items), 1)
        self.assertEqual(first["other_user"]["id"], "u_b")
        self.assertEqual(second["other_user"]["id"], "u_a")

    def test_concurrent_creation_returns_existing(self):
        real_get_chat = chats.get_chat
        calls = {"n": 0}

        def stale_then_real(chat_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_get_chat(chat_id)

        existing = chats.get_or_create_chat(self.user("u_a"), "u_b")
        with patch.object(chats, "get_chat", side_effect=stale_then_real):
            again = chats.get_or_create_chat(self.user("u_b"), "u_a")
        self.assertEqual(existing["id"], again["id"])

    def test_requires_mutual_follow(self):
        with self.assertRaises(HTTPException) as ctx:
            chats.get_or_create_chat(self.user("u_a"), "u_c")
        self.assertEqual(ctx.exception.status_code, 403)

    def test_business_recipient_forbidden(self):
        with self.assertRaises(HTTPException) as ctx:
            chats.get_or_create_chat(self.user("u_a"), "u_biz")
        self.assertEqual(ctx.exception.status_code, 403)

    def test_self_chat_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            chats.get_or_create_chat(self.user("u_a"), "u_a")
        self.assertEqual(ctx.exception.status_code, 400)


class TestMessaging(ChatsTestCase):
    def setUp(self):
        super().setUp()
        self.chat_id = chats.get_or_create_chat(self.user("u_a"), "u_b")["id"]

    def unread(self, user_id):
        return self.table.item(f"CHAT#{self.chat_id}")["unread"][user_id]

    def test_unread_counts_and_reset(self):
        self.send("u_a", self.chat_id, "hi")
        self.send("u_a", self.chat_id, "there")

        self.assertEqual(self.unread("u_b"), 2)
        self.assertEqual(self.unread("u_a"), 0)

        marked = chats.mark_read(self.user("u_b"), self.chat_id)
        self.assertEqual(marked, 2)
        self.assertEqual(self.unread("u_b"), 0)
        msgs = chats.get_messages(self.user("u_b"), self.chat_id).items
        self.assertTrue(all(m["is_read"] for m in msgs))
        self.assertEqual(msgs[0]["read_by"][0]["user_id"], "u_b")

    def test_messages_chronological_and_preview(self):
        self.send("u_a", self.chat_id, "first")
        self.send("u_b", self.chat_id, "second")

        msgs = chats.get_messages(self.user("u_a"), self.chat_id).items
        self.assertEqual([m["text"] for m in msgs], ["first", "second"])
        listed = chats.list_chats(self.user("u_a"))
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0]["last_message_preview"], "second")
        self.assertEqual(listed[0]["unread_count"], 1)

    def test_media_message(self):
        msg = self.send("u_a", self.chat_id, payload=(b"vid", "video/mp4"))
        self.assertEqual(msg["type"], "video")
        self.assertEqual(self.table.item(f"CHAT#{self.chat_id}")["last_message_preview"], "Sent a video")

    def test_shared_post_must_exist(self):
        with self.assertRaises(HTTPException) as ctx:
            self.send("u_a", self.chat_id, shared_post_id="pst_missing")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_empty_message_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            self.send("u_a", self.chat_id, "   ")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_outsider_forbidden(self):
        with self.assertRaises(HTTPException) as ctx:
            self.send("u_c", self.chat_id, "let me in")
        self.assertEqual(ctx.exception.status_code, 403)

    def test_push_goes_to_other_participant(self):
        self.send("u_a", self.chat_id, "ping")
        self.push.send.assert_called_once()
        self.assertEqual(self.push.send.call_args.args[0], "tok-b")


if __name__ == "__main__":
    unittest.main()
