import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from passkey_userop.typing import Address


class SenderLockRegistry:
    """
    One asyncio.Lock per sender. Holding a sender's lock from the nonce read
    until the operation is final keeps in-process operations for that
    sender from reading the same nonce. Once an inclusion wait times out the
    lock is released while the operation is still pending, so the next
    operation may reuse its nonce and only one of the two can land.
    Different senders never share a lock.
    Locks are dropped as soon as nobody holds or waits for them.
    """

    _locks: dict[str, asyncio.Lock]
    _users: dict[str, int]

    def __init__(self) -> None:
        self._locks = {}
        self._users = {}

    def get_lock(self, sender: Address) -> asyncio.Lock:
        key = sender.lower()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_locked(self, sender: Address) -> bool:
        lock = self._locks.get(sender.lower())
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, sender: Address) -> AsyncIterator[None]:
        key = sender.lower()
        lock = self.get_lock(sender)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
