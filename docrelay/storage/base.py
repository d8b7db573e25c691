"""Media store interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class MediaStore(Protocol):
    """Upload bytes, get back a permanent URL.

    Object names are content-addressed, so ``put`` is idempotent: the same
    bytes under the same namespace/scope always yield the same URL.
    """

    name: str

    async def put(
        self, data: bytes, namespace: str, scope: str, filename_hint: str
    ) -> str: ...

    async def delete_scope(self, namespace: str, scope: str) -> int: ...

    def owns(self, url: str) -> bool: ...
