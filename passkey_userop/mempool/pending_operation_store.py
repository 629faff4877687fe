import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from passkey_userop.user_operation.user_operation import PackedUserOperation

PENDING_KEY_PREFIX = "userop:pending:"
DEFAULT_PENDING_TTL_SECONDS = 3600


@dataclass(frozen=True)
class PendingOperation:
    user_operation: PackedUserOperation
    submitted_at: int  # unix milliseconds

    def to_json(self) -> str:
        return json.dumps({
            "userOp": self.user_operation.get_packed_user_operation_json(),
            "submittedAt": self.submitted_at,
        })

    @classmethod
    def from_json(cls, payload: str | bytes) -> "PendingOperation":
        data = json.loads(payload)
        return cls(
            PackedUserOperation.from_json(data["userOp"]),
            int(data["submittedAt"]),
        )


def pending_operation_key(user_operation_hash: str) -> str:
    return PENDING_KEY_PREFIX + user_operation_hash.lower()


class PendingOperationStore:
    """
    In-flight bundler submissions, keyed by UserOperation hash.
    Entries expire after `ttl` and are never updated. This is a lookup aid,
    the bundler and the chain stay the source of truth, so store failures
    are logged and do not fail the submission.
    """

    client: Any
    ttl: int

    def __init__(self, client: Any, ttl: int = DEFAULT_PENDING_TTL_SECONDS):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(
        cls, redis_url: str, ttl: int = DEFAULT_PENDING_TTL_SECONDS
    ) -> "PendingOperationStore":
        return cls(
            redis.from_url(redis_url, encoding="utf-8", decode_responses=True),
            ttl,
        )

    async def put(
        self,
        user_operation_hash: str,
        user_operation: PackedUserOperation,
        submitted_at: int | None = None,
    ) -> bool:
        if submitted_at is None:
            submitted_at = int(time.time() * 1000)
        pending_operation = PendingOperation(user_operation, submitted_at)
        try:
            await self.client.set(
                pending_operation_key(user_operation_hash),
                pending_operation.to_json(),
                ex=self.ttl,
            )
        except RedisError as excp:
            logging.warning(
                f"Failed to record pending UserOperation {user_operation_hash}. "
                f"error: {excp}"
            )
            return False
        return True

    async def get(self, user_operation_hash: str) -> PendingOperation | None:
        try:
            payload = await self.client.get(
                pending_operation_key(user_operation_hash))
        except RedisError as excp:
            logging.warning(
                f"Failed to read pending UserOperation {user_operation_hash}. "
                f"error: {excp}"
            )
            return None
        if payload is None:
            return None
        return PendingOperation.from_json(payload)

    async def close(self) -> None:
        await self.client.aclose()
