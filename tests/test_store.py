import unittest
from unittest.mock import Mock, patch

from botocore.exceptions import ClientError
from fastapi import HTTPException

from app.core import store


def client_error(code, op="UpdateItem"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, op)


class TestSingleItems(unittest.TestCase):
    def test_get_item_returns_item_or_none(self):
        table = Mock()
        table.get_item.return_value = {"Item": {"post_id": "p1"}}
        self.assertEqual(store.get_item(table, {"post_id": "p1"}), {"post_id": "p1"})
        table.get_item.return_value = {}
        self.assertIsNone(store.get_item(table, {"post_id": "p1"}))

    def test_client_error_becomes_store_error(self):
        table = Mock()
        table.get_item.side_effect = client_error("ProvisionedThroughputExceededException", "GetItem")
        with self.assertRaises(HTTPException) as ctx:
            store.get_item(table, {"post_id": "p1"})
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.detail, "Database error")

    def test_put_item_if_absent(self):
        table = Mock()
        store.put_item(table, {"user_id": "u1"}, if_absent="user_id")
        self.assertIn("ConditionExpression", table.put_item.call_args.kwargs)

        table.put_item.side_effect = client_error("ConditionalCheckFailedException", "PutItem")
        with self.assertRaises(store.ConditionFailed):
            store.put_item(table, {"user_id": "u1"}, if_absent="user_id")

    def test_delete_item_returns_old_document(self):
        table = Mock()
        table.delete_item.return_value = {"Attributes": {"notification_id": "n1"}}
        out = store.delete_item(table, {"notification_id": "n1"}, expect={"to_user_id": "u1"})
        self.assertEqual(out, {"notification_id": "n1"})
        kwargs = table.delete_item.call_args.kwargs
        self.assertEqual(kwargs["ReturnValues"], "ALL_OLD")
        self.assertIn("ConditionExpression", kwargs)

    def test_delete_item_missing_or_mismatch_is_none(self):
        table = Mock()
        table.delete_item.return_value = {}
        self.assertIsNone(store.delete_item(table, {"notification_id": "n1"}))
        table.delete_item.side_effect = client_error("ConditionalCheckFailedException", "DeleteItem")
        self.assertIsNone(store.delete_item(table, {"notification_id": "n1"}, expect={"to_user_id": "u2"}))


class TestUpdates(unittest.TestCase):
    def test_update_fields_builds_set_expression(self):
        table = Mock()
        table.update_item.return_value = {"Attributes": {"user_id": "u1", "bio": "hi"}}

        out = store.update_fields(table, {"user_id": "u1"}, {"bio": "hi", "location": "Paris"})

        self.assertEqual(out["bio"], "hi")
        kwargs = table.update_item.call_args.kwargs
        self.assertEqual(kwargs["UpdateExpression"], "SET #f0 = :x0, #f1 = :x1")
        self.assertEqual(kwargs["ExpressionAttributeNames"], {"#f0": "bio", "#f1": "location"})
        self.assertEqual(kwargs["ExpressionAttributeValues"], {":x0": "hi", ":x1": "Paris"})
        self.assertEqual(kwargs["ReturnValues"], "ALL_NEW")

    def test_missing_item_raises_condition_failed(self):
        table = Mock()
        table.update_item.side_effect = client_error("ConditionalCheckFailedException")
        with self.assertRaises(store.ConditionFailed):
            store.add_to_set(table, {"post_id": "p1"}, "likes", ["u1"])

    def test_set_and_list_expressions(self):
        table = Mock()
        table.update_item.return_value = {"Attributes": {}}

        store.add_to_set(table, {"post_id": "p1"}, "likes", ["u1"])
        self.assertEqual(table.update_item.call_args.kwargs["UpdateExpression"], "ADD #a :s")
        self.assertEqual(table.update_item.call_args.kwargs["ExpressionAttributeValues"], {":s": {"u1"}})

        store.remove_from_set(table, {"post_id": "p1"}, "likes", ["u1"])
        self.assertEqual(table.update_item.call_args.kwargs["UpdateExpression"], "DELETE #a :s")

        store.append_to_list(table, {"post_id": "p1"}, "comments", "c1")
        kwargs = table.update_item.call_args.kwargs
        self.assertEqual(kwargs["UpdateExpression"], "SET #a = list_append(if_not_exists(#a, :empty), :item)")
        self.assertEqual(kwargs["ExpressionAttributeValues"], {":empty": [], ":item": ["c1"]})

    def test_remove_from_list_targets_current_index(self):
        table = Mock()
        table.get_item.return_value = {"Item": {"post_id": "p1", "comments": ["c0", "c1", "c2"]}}
        table.update_item.return_value = {"Attributes": {"post_id": "p1", "comments": ["c0", "c2"]}}

        out = store.remove_from_list(table, {"post_id": "p1"}, "comments", "c1")

        self.assertEqual(out["comments"], ["c0", "c2"])
        kwargs = table.update_item.call_args.kwargs
        self.assertEqual(kwargs["UpdateExpression"], "REMOVE #a[1]")
        self.assertNotIn("ExpressionAttributeValues", kwargs)

    def test_remove_from_list_retries_when_index_moved(self):
        table = Mock()
        table.get_item.side_effect = [
            {"Item": {"post_id": "p1", "comments": ["c0", "c1"]}},
            {"Item": {"post_id": "p1", "comments": ["c1"]}},
        ]
        table.update_item.side_effect = [
            client_error("ConditionalCheckFailedException"),
            {"Attributes": {"post_id": "p1", "comments": []}},
        ]

        store.remove_from_list(table, {"post_id": "p1"}, "comments", "c1")

        self.assertEqual(table.update_item.call_args.kwargs["UpdateExpression"], "REMOVE #a[0]")

    def test_remove_from_list_absent_value_is_noop(self):
        table = Mock()
        table.get_item.return_value = {"Item": {"post_id": "p1", "comments": ["c0"]}}
        store.remove_from_list(table, {"post_id": "p1"}, "comments", "zz")
        table.update_item.assert_not_called()


class TestQueries(unittest.TestCase):
    def test_query_page_skips_across_pages(self):
        table = Mock()
        table.query.side_effect = [
            {"Items": [{"n": 1}, {"n": 2}], "LastEvaluatedKey": {"k": 2}},
            {"Items": [{"n": 3}, {"n": 4}], "LastEvaluatedKey": {"k": 4}},
            {"Items": [{"n": 5}]},
        ]

        out = store.query_page(table, index="feed-index", partition=("feed", "ALL"), skip=3, limit=2)

        self.assertEqual(out, [{"n": 4}, {"n": 5}])
        first = table.query.call_args_list[0].kwargs
        self.assertEqual(first["IndexName"], "feed-index")
        self.assertFalse(first["ScanIndexForward"])
        self.assertEqual(first["Limit"], 5)
        self.assertEqual(table.query.call_args_list[2].kwargs["ExclusiveStartKey"], {"k": 4})

    def test_query_page_stops_when_full(self):
        table = Mock()
        table.query.return_value = {"Items": [{"n": 1}, {"n": 2}, {"n": 3}], "LastEvaluatedKey": {"k": 3}}
        out = store.query_page(table, index=None, partition=("feed", "ALL"), skip=0, limit=3)
        self.assertEqual(len(out), 3)
        self.assertEqual(table.query.call_count, 1)
        self.assertNotIn("IndexName", table.query.call_args.kwargs)

    def test_count_items_sums_pages(self):
        table = Mock()
        table.query.side_effect = [
            {"Count": 3, "LastEvaluatedKey": {"k": 1}},
            {"Count": 2},
        ]
        total = store.count_items(table, index="recipient-index", partition=("to_user_id", "u1"), where={"is_read": False})
        self.assertEqual(total, 5)
        kwargs = table.query.call_args_list[0].kwargs
        self.assertEqual(kwargs["Select"], "COUNT")
        self.assertIn("FilterExpression", kwargs)

    def test_batch_get_follows_unprocessed_keys(self):
        table = Mock()
        table.name = "users"
        ddb = Mock()
        ddb.batch_get_item.side_effect = [
            {
                "Responses": {"users": [{"user_id": "a"}]},
                "UnprocessedKeys": {"users": {"Keys": [{"user_id": "b"}]}},
            },
            {"Responses": {"users": [{"user_id": "b"}]}},
        ]

        with patch.object(store, "ddb", ddb):
            found = store.batch_get(table, "user_id", ["a", None, "b", "a"])

        self.assertEqual(set(found), {"a", "b"})
        first = ddb.batch_get_item.call_args_list[0].kwargs["RequestItems"]
        self.assertEqual(first, {"users": {"Keys": [{"user_id": "a"}, {"user_id": "b"}]}})

    def test_batch_get_with_no_ids_skips_call(self):
        ddb = Mock()
        with patch.object(store, "ddb", ddb):
            self.assertEqual(store.batch_get(Mock(), "user_id", [None, ""]), {})
        ddb.batch_get_item.assert_not_called()

    def test_scan_matching_walks_pages(self):
        table = Mock()
        table.scan.side_effect = [
            {"Items": [{"n": 1}], "LastEvaluatedKey": {"k": 1}},
            {"Items": [{"n": 2}]},
        ]
        out = store.scan_matching(table, ("username_lc", "first_name_lc"), "jo")
        self.assertEqual(out, [{"n": 1}, {"n": 2}])
        self.assertIn("FilterExpression", table.scan.call_args_list[0].kwargs)


class TestPairedWrite(unittest.TestCase):
    def test_success_skips_undo(self):
        undo = Mock()
        self.assertEqual(store.paired_write(lambda: "ok", undo, what="follow"), "ok")
        undo.assert_not_called()

    def test_failure_runs_undo_and_reraises(self):
        undo = Mock()
        second = Mock(side_effect=RuntimeError("boom"))
        with self.assertRaises(RuntimeError):
            store.paired_write(second, undo, what="follow")
        undo.assert_called_once()

    def test_failed_undo_is_logged_and_original_error_kept(self):
        second = Mock(side_effect=RuntimeError("boom"))
        undo = Mock(side_effect=ValueError("undo failed"))
        with self.assertLogs("app.core.store", level="ERROR") as logs:
            with self.assertRaises(RuntimeError):
                store.paired_write(second, undo, what="post_comment")
        self.assertIn("post_comment", logs.output[0])
