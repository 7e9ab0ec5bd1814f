import unittest
from unittest.mock import Mock

from app.client.api import ApiClientError
from app.client.cache import (
    ME_KEY,
    UNREAD_COUNT_KEY,
    QueryCache,
    comments_key,
    feed_key,
    notifications_key,
    post_key,
    user_key,
)
from app.client.sync import SyncEngine


def comment(cid, likes=(), replies=()):
    return {"id": cid, "likes": list(likes), "replies": list(replies)}


class SyncTestCase(unittest.TestCase):
    def setUp(self):
        self.api = Mock()
        self.cache = QueryCache()
        self.errors = []
        self.engine = SyncEngine(
            self.api,
            "me",
            self.cache,
            on_error=lambda action, exc: self.errors.append((action, exc.status)),
        )


class TestPostLike(SyncTestCase):
    def setUp(self):
        super().setUp()
        self.cache.set(post_key("p1"), {"id": "p1", "likes": ["other"]})

    def test_optimistic_value_is_visible_while_request_is_in_flight(self):
        seen = {}

        def like_post(post_id):
            seen["likes"] = self.cache.get(post_key(post_id))["likes"]
            return {"likes": ["me", "other"], "liked": True}

        self.api.like_post.side_effect = like_post

        resp = self.engine.toggle_post_like("p1")

        self.assertEqual(seen["likes"], ["other", "me"])
        self.assertEqual(resp["liked"], True)
        self.assertEqual(self.cache.get(post_key("p1"))["likes"], ["me", "other"])
        self.assertEqual(self.errors, [])

    def test_failure_rolls_back_and_reports(self):
        self.api.like_post.side_effect = ApiClientError(500, "Database error")

        resp = self.engine.toggle_post_like("p1")

        self.assertIsNone(resp)
        self.assertEqual(self.cache.get(post_key("p1"))["likes"], ["other"])
        self.assertEqual(self.errors, [("toggle_post_like", 500)])

    def test_success_invalidates_feed_pages(self):
        self.cache.set(feed_key(1), {"posts": []})
        self.api.like_post.return_value = {"likes": ["me", "other"], "liked": True}
        self.engine.toggle_post_like("p1")
        self.assertTrue(self.cache.is_stale(feed_key(1)))
        self.assertFalse(self.cache.is_stale(post_key("p1")))

    def test_older_response_does_not_overwrite_newer_call(self):
        calls = []

        def like_post(post_id):
            calls.append(post_id)
            if len(calls) == 1:
                # Second tap is issued and settled before the first response arrives.
                self.engine.toggle_post_like(post_id)
                return {"likes": ["me", "other"], "liked": True}
            return {"likes": ["other"], "liked": False}

        self.api.like_post.side_effect = like_post

        self.engine.toggle_post_like("p1")

        self.assertEqual(len(calls), 2)
        self.assertEqual(self.cache.get(post_key("p1"))["likes"], ["other"])

    def test_older_failure_marks_entry_stale_instead_of_rolling_back(self):
        calls = []

        def like_post(post_id):
            calls.append(post_id)
            if len(calls) == 1:
                self.engine.toggle_post_like(post_id)
                raise ApiClientError(0, "timeout")
            return {"likes": ["other"], "liked": False}

        self.api.like_post.side_effect = like_post

        self.engine.toggle_post_like("p1")

        self.assertEqual(self.cache.get(post_key("p1"))["likes"], ["other"])
        self.assertTrue(self.cache.is_stale(post_key("p1")))
        self.assertEqual(self.errors, [("toggle_post_like", 0)])

    def test_uncached_entry_still_sends_request(self):
        self.api.like_post.return_value = {"likes": ["me"], "liked": True}
        self.assertEqual(self.engine.toggle_post_like("p2"), {"likes": ["me"], "liked": True})
        self.assertIsNone(self.cache.get(post_key("p2")))


class TestCommentMutations(SyncTestCase):
    def setUp(self):
        super().setUp()
        self.cache.set(comments_key("p1"), {
            "comments": [comment("c1", replies=[comment("r1")]), comment("c2")],
            "page": 1,
        })

    def test_toggle_comment_like_reaches_replies(self):
        self.api.like_comment.return_value = {"likes": ["me"], "liked": True}

        self.engine.toggle_comment_like("p1", "r1")

        reply = self.cache.get(comments_key("p1"))["comments"][0]["replies"][0]
        self.assertEqual(reply["likes"], ["me"])
        self.api.like_comment.assert_called_once_with("r1")

    def test_add_comment_replaces_placeholder_with_server_comment(self):
        seen = {}

        def create(post_id, content, image):
            first = self.cache.get(comments_key(post_id))["comments"][0]
            seen["pending"] = first.get("pending")
            return {"id": "c9", "content": content, "likes": [], "replies": []}

        self.api.create_comment.side_effect = create
        self.cache.set(post_key("p1"), {"id": "p1"})

        self.engine.add_comment("p1", "hello")

        self.assertTrue(seen["pending"])
        ids = [c["id"] for c in self.cache.get(comments_key("p1"))["comments"]]
        self.assertEqual(ids, ["c9", "c1", "c2"])
        self.assertTrue(self.cache.is_stale(post_key("p1")))

    def test_failed_add_comment_drops_placeholder(self):
        self.api.create_comment.side_effect = ApiClientError(400, "Comment must contain text or image")
        self.engine.add_comment("p1", "")
        ids = [c["id"] for c in self.cache.get(comments_key("p1"))["comments"]]
        self.assertEqual(ids, ["c1", "c2"])
        self.assertEqual(self.errors, [("add_comment", 400)])

    def test_overlapping_add_comment_reloads_instead_of_keeping_placeholder(self):
        created = iter(["c8", "c9"])

        def create(post_id, content, image):
            if content == "first":
                self.engine.add_comment(post_id, "second")
            return {"id": next(created), "content": content, "likes": [], "replies": []}

        self.api.create_comment.side_effect = create
        self.api.list_comments.return_value = {
            "comments": [comment("c9"), comment("c8"), comment("c1"), comment("c2")],
            "page": 1,
        }

        self.engine.add_comment("p1", "first")

        self.assertTrue(self.cache.is_stale(comments_key("p1")))
        ids = [c["id"] for c in self.engine.comments("p1")["comments"]]
        self.assertEqual(ids, ["c9", "c8", "c1", "c2"])
        self.api.list_comments.assert_called_once_with("p1", 1)

    def test_reply_placeholder_lands_in_parent_thread(self):
        seen = {}

        def reply(comment_id, content, image):
            parent = self.cache.get(comments_key("p1"))["comments"][0]
            seen["pending"] = [r.get("pending", False) for r in parent["replies"]]
            return {"id": "r2", "content": content, "likes": [], "replies": []}

        self.api.reply_to_comment.side_effect = reply

        self.engine.reply_to_comment("p1", "c1", "thanks")

        self.assertEqual(seen["pending"], [False, True])
        parent = self.cache.get(comments_key("p1"))["comments"][0]
        self.assertEqual([r["id"] for r in parent["replies"]], ["r1", "r2"])
        self.api.reply_to_comment.assert_called_once_with("c1", "thanks", None)

    def test_reply_to_reply_goes_under_top_level_comment(self):
        self.api.reply_to_comment.return_value = {"id": "r2", "likes": [], "replies": []}

        self.engine.reply_to_comment("p1", "r1", "me too")

        page = self.cache.get(comments_key("p1"))
        self.assertEqual([r["id"] for r in page["comments"][0]["replies"]], ["r1", "r2"])
        self.assertEqual(page["comments"][1]["replies"], [])
        self.api.reply_to_comment.assert_called_once_with("r1", "me too", None)

    def test_failed_reply_rolls_back(self):
        self.api.reply_to_comment.side_effect = ApiClientError(404, "Parent comment not found")

        self.assertIsNone(self.engine.reply_to_comment("p1", "c1", "hello"))

        parent = self.cache.get(comments_key("p1"))["comments"][0]
        self.assertEqual([r["id"] for r in parent["replies"]], ["r1"])
        self.assertEqual(self.errors, [("reply_to_comment", 404)])

    def test_delete_comment_removes_top_level_and_reply(self):
        self.api.delete_comment.return_value = {"message": "Comment deleted successfully"}
        self.engine.delete_comment("p1", "r1")
        self.engine.delete_comment("p1", "c2")
        page = self.cache.get(comments_key("p1"))
        self.assertEqual([c["id"] for c in page["comments"]], ["c1"])
        self.assertEqual(page["comments"][0]["replies"], [])

    def test_forbidden_delete_restores_comment(self):
        self.api.delete_comment.side_effect = ApiClientError(403, "You can only delete your own comments")
        self.engine.delete_comment("p1", "c2")
        ids = [c["id"] for c in self.cache.get(comments_key("p1"))["comments"]]
        self.assertEqual(ids, ["c1", "c2"])


class TestFollowAndNotifications(SyncTestCase):
    def test_toggle_follow_reconciles_with_server_state(self):
        self.cache.set(user_key("bob"), {"id": "b", "followers": []})
        self.api.follow.return_value = {"message": "User followed successfully", "following": True}

        self.engine.toggle_follow("bob", "b")

        self.assertEqual(self.cache.get(user_key("bob"))["followers"], ["me"])
        self.api.follow.assert_called_once_with("b")

    def test_toggle_follow_trusts_server_when_local_was_out_of_date(self):
        self.cache.set(user_key("bob"), {"id": "b", "followers": ["me"]})
        self.api.follow.return_value = {"message": "User followed successfully", "following": True}

        self.engine.toggle_follow("bob", "b")

        self.assertEqual(self.cache.get(user_key("bob"))["followers"], ["me"])

    def test_mark_all_read_zeroes_badge_and_invalidates_lists(self):
        self.cache.set(UNREAD_COUNT_KEY, {"count": 3})
        self.cache.set(notifications_key(1), {"notifications": []})
        self.api.mark_all_read.return_value = {"message": "All notifications marked as read"}

        self.engine.mark_all_read()

        self.assertEqual(self.engine.unread_count(), 0)
        self.assertTrue(self.cache.is_stale(notifications_key(1)))

    def test_failed_mark_all_read_restores_badge(self):
        self.cache.set(UNREAD_COUNT_KEY, {"count": 3})
        self.api.mark_all_read.side_effect = ApiClientError(500, "Internal server error")
        self.engine.mark_all_read()
        self.assertEqual(self.cache.get(UNREAD_COUNT_KEY), {"count": 3})

    def test_delete_notification_drops_it_and_invalidates_badge(self):
        self.cache.set(UNREAD_COUNT_KEY, {"count": 2})
        self.cache.set(notifications_key(1), {"notifications": [{"id": "n1"}, {"id": "n2"}]})
        self.cache.set(notifications_key(2), {"notifications": [{"id": "n3"}]})
        seen = {}

        def delete(notification_id):
            seen["ids"] = [n["id"] for n in self.cache.get(notifications_key(1))["notifications"]]
            return {"message": "Notification deleted successfully"}

        self.api.delete_notification.side_effect = delete

        self.engine.delete_notification("n1")

        self.assertEqual(seen["ids"], ["n2"])
        self.assertEqual([n["id"] for n in self.cache.get(notifications_key(1))["notifications"]], ["n2"])
        self.assertTrue(self.cache.is_stale(UNREAD_COUNT_KEY))
        self.assertTrue(self.cache.is_stale(notifications_key(2)))

    def test_failed_delete_notification_restores_page(self):
        self.cache.set(notifications_key(1), {"notifications": [{"id": "n1"}]})
        self.api.delete_notification.side_effect = ApiClientError(404, "Notification not found")

        self.engine.delete_notification("n1")

        self.assertEqual(self.cache.get(notifications_key(1)), {"notifications": [{"id": "n1"}]})
        self.assertFalse(self.cache.is_stale(notifications_key(1)))
        self.assertEqual(self.errors, [("delete_notification", 404)])

    def test_follow_marks_current_user_stale(self):
        self.api.me.return_value = {"id": "me", "following": []}
        self.engine.me()
        self.api.follow.return_value = {"message": "User followed successfully", "following": True}

        self.engine.toggle_follow("bob", "b")

        self.assertTrue(self.cache.is_stale(ME_KEY))
        self.api.me.return_value = {"id": "me", "following": ["b"]}
        self.assertEqual(self.engine.me()["following"], ["b"])

    def test_refresh_unread_count(self):
        self.api.unread_count.return_value = 5
        self.assertEqual(self.engine.refresh_unread_count(), 5)
        self.assertEqual(self.engine.unread_count(), 5)
        self.api.unread_count.assert_called_once()

    def test_refresh_failure_keeps_cached_count(self):
        self.cache.set(UNREAD_COUNT_KEY, {"count": 2})
        self.api.unread_count.side_effect = ApiClientError(0, "offline")
        self.assertIsNone(self.engine.refresh_unread_count())
        self.assertEqual(self.cache.get(UNREAD_COUNT_KEY), {"count": 2})

    def test_default_error_surface_logs_warning(self):
        engine = SyncEngine(self.api, "me", QueryCache())
        self.api.mark_all_read.side_effect = ApiClientError(500, "boom")
        with self.assertLogs("app.client.sync", level="WARNING") as logs:
            self.assertIsNone(engine.mark_all_read())
        self.assertIn("mark_all_read", logs.output[0])


class TestReads(SyncTestCase):
    def test_reads_go_through_cache(self):
        self.api.get_post.return_value = {"id": "p1"}
        self.assertEqual(self.engine.post("p1"), {"id": "p1"})
        self.assertEqual(self.engine.post("p1"), {"id": "p1"})
        self.api.get_post.assert_called_once_with("p1")

    def test_feed_pages_are_cached_per_page(self):
        self.api.list_posts.return_value = {"posts": [], "page": 1}
        self.engine.feed()
        self.engine.feed()
        self.engine.feed(2)
        self.assertEqual(self.api.list_posts.call_count, 2)
        self.api.list_posts.assert_called_with(2)

    def test_comments_page_reload_after_invalidation(self):
        self.api.list_comments.return_value = {"comments": []}
        self.engine.comments("p1")
        self.cache.invalidate(("comments", "p1"))
        self.engine.comments("p1")
        self.assertEqual(self.api.list_comments.call_count, 2)
