"""DynamoDB-backed cache slot."""
import logging
import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from events.errors import LocalStoreError
from storage.local_cache import CacheSlot

logger = logging.getLogger(__name__)


class DynamoDBSlot(CacheSlot):
    """
    Keeps each cache slot as a single DynamoDB item.

    The table uses ``collection_key`` (string) as its hash key; the serialized
    collection lives in the ``payload`` attribute.
    """

    KEY_ATTRIBUTE = 'collection_key'

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBSlot for table: {table_name}")

    def read(self, key: str) -> Optional[str]:
        try:
            response = self.table.get_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading slot '{key}' from DynamoDB: {e}")
            raise LocalStoreError(str(e)) from e

        item = response.get('Item')
        if not item:
            return None
        return item.get('payload')

    def write(self, key: str, payload: str) -> None:
        item = {
            self.KEY_ATTRIBUTE: key,
            'payload': payload,
            'last_updated': int(time.time())
        }
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error writing slot '{key}' to DynamoDB: {e}")
            raise LocalStoreError(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self.table.delete_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting slot '{key}' from DynamoDB: {e}")
            raise LocalStoreError(str(e)) from e
