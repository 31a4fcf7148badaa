"""DynamoDB-backed dedup store for seen event ids."""
import logging
from typing import Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.errors import StorageError
from storage.dedup_store import SEEN_SENTINEL, DedupStore

logger = logging.getLogger(__name__)


class DynamoDBDedupStore(DedupStore):
    """Dedup store keeping one item per seen event id."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    KEY_ATTRIBUTE = 'event_id'
    VALUE_ATTRIBUTE = 'seen'

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and verify the table is reachable.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region, defaults to the environment's region

        Raises:
            StorageError: If the table does not exist or cannot be described
        """
        self.table_name = table_name
        try:
            self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
            self.table = self.dynamodb.Table(table_name)
            self.table.load()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Can't open DynamoDB table {table_name}: {e}"
            ) from e
        logger.info(f"Initialized DynamoDBDedupStore for table: {table_name}")

    def exists(self, event_id: str) -> bool:
        try:
            response = self.table.get_item(
                Key={self.KEY_ATTRIBUTE: event_id},
                ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error looking up event id {event_id}: {e}")
            raise StorageError(
                f"Can't look up ID {event_id} in {self.table_name}: {e}",
                event_id=event_id
            ) from e
        return 'Item' in response

    def record(self, event_ids: Iterable[str]) -> None:
        """
        Write seen event ids to DynamoDB in batches of 25 items.

        Puts are idempotent overwrites, so re-recording an id is harmless.

        Args:
            event_ids: Event ids to mark as seen

        Raises:
            StorageError: If any batch fails to write
        """
        ids = self._unique(event_ids)
        if not ids:
            return

        logger.info(f"Recording {len(ids)} event ids in DynamoDB")

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(ids), self.BATCH_SIZE):
            batch = ids[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer(
                    overwrite_by_pkeys=[self.KEY_ATTRIBUTE]
                ) as writer:
                    for event_id in batch:
                        writer.put_item(Item={
                            self.KEY_ATTRIBUTE: event_id,
                            self.VALUE_ATTRIBUTE: SEEN_SENTINEL
                        })
            except (ClientError, BotoCoreError) as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise StorageError(
                    f"Can't add ids to {self.table_name}: {e}"
                ) from e

        logger.info(f"Successfully recorded {len(ids)} event ids")

    @staticmethod
    def _unique(event_ids: Iterable[str]) -> List[str]:
        seen = set()
        unique = []
        for event_id in event_ids:
            if event_id not in seen:
                seen.add(event_id)
                unique.append(event_id)
        return unique
