import logging

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from aihub_query.config import (
    S3_ACCESS_KEY,
    S3_BUCKET,
    S3_ENDPOINT,
    S3_MAX_ATTEMPTS,
    S3_SECRET_KEY,
)
from aihub_query.errors import LoadError

logger = logging.getLogger(__name__)


class S3Storage:
    """Reads raw dataset bytes from the S3-compatible bucket the upload service writes to."""

    def __init__(
        self,
        bucket: str = S3_BUCKET,
        endpoint_url: str | None = S3_ENDPOINT,
        access_key: str | None = S3_ACCESS_KEY,
        secret_key: str | None = S3_SECRET_KEY,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.access_key = access_key
        self.secret_key = secret_key
        self.session = aioboto3.Session()

    async def fetch(self, key: str) -> bytes:
        try:
            async with self.session.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                config=Config(retries=dict(max_attempts=S3_MAX_ATTEMPTS)),
            ) as s3_client:
                obj = await s3_client.get_object(Bucket=self.bucket, Key=key)
                async with obj["Body"] as stream:
                    return await stream.read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "unknown")
            logger.warning(f"failed to fetch {key} from {self.bucket}: {code}")
            raise LoadError(f"Failed to fetch dataset content: {code}") from e
        except BotoCoreError as e:
            logger.warning(f"failed to fetch {key} from {self.bucket}: {e}")
            raise LoadError(f"Failed to fetch dataset content: {e}") from e
