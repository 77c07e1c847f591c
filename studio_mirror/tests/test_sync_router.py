import types
import unittest

from fastapi import HTTPException

from studio_mirror.routers import sync as sync_router


class _FakeSyncEngine:
    async def get_observability_snapshot(self):
        return {"activeOperationCount": 1, "activeOperations": [{"id": "OP-1"}], "recentOperations": [], "trackedOperationCount": 1}

    async def list_operations(self, limit=20):
        return [{"id": "OP-1", "status": "running"}, {"id": "OP-0", "status": "completed"}][:limit]

    async def get_operation(self, operation_id):
        if operation_id == "OP-404":
            return None
        return {"id": operation_id, "status": "completed"}


class SyncRouterTests(unittest.IsolatedAsyncioTestCase):
    def _request(self):
        return types.SimpleNamespace(
            app=types.SimpleNamespace(state=types.SimpleNamespace(sync_engine=_FakeSyncEngine()))
        )

    async def test_status_includes_operations(self) -> None:
        payload = await sync_router.get_sync_status(self._request())

        self.assertEqual(payload["status"], "active")
        self.assertEqual(payload["operations"]["activeOperationCount"], 1)

    async def test_list_operations_respects_limit(self) -> None:
        payload = await sync_router.list_sync_operations(self._request(), limit=1)

        self.assertEqual(payload["count"], 1)
        self.assertEqual(payload["items"][0]["id"], "OP-1")

    async def test_get_operation(self) -> None:
        payload = await sync_router.get_sync_operation(self._request(), "OP-9")

        self.assertEqual(payload["item"]["id"], "OP-9")

    async def test_missing_operation_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sync_router.get_sync_operation(self._request(), "OP-404")

        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
