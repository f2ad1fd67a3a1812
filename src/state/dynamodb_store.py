"""DynamoDB-backed state store."""

import asyncio
import json

from src.state.store import StateStore


class DynamoDBStateStore(StateStore):
    """Stores state records in a DynamoDB table keyed on ``state_key``.

    The record is kept as a JSON string attribute so DynamoDB's Decimal
    conversion never reaches the schema validation layer.
    """

    def __init__(self, table_name: str, region: str = "us-east-1"):
        self._table_name = table_name
        self._region = region
        self._table = None

    def _get_table(self):
        """Lazy-init boto3 Table resource."""
        if self._table is None:
            import boto3

            dynamodb = boto3.resource("dynamodb", region_name=self._region)
            self._table = dynamodb.Table(self._table_name)
        return self._table

    async def get(self, key: str) -> dict | None:
        return await asyncio.to_thread(self._get_item, key)

    async def put(self, key: str, record: dict) -> None:
        await asyncio.to_thread(self._put_item, key, record)

    def _get_item(self, key: str) -> dict | None:
        table = self._get_table()
        resp = table.get_item(Key={"state_key": key})

        item = resp.get("Item")
        if not item or "record" not in item:
            return None

        try:
            return json.loads(item["record"])
        except (TypeError, ValueError):
            return None

    def _put_item(self, key: str, record: dict) -> None:
        table = self._get_table()
        table.put_item(Item={"state_key": key, "record": json.dumps(record)})
