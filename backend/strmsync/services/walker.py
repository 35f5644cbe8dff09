"""Depth-first lazy traversal of a paginated remote directory tree."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Callable

from strmsync.exceptions import InvalidPathError, RemoteError

if TYPE_CHECKING:
    from strmsync.services.alist_client import AlistClient, RemoteEntry

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[str, Exception], None]
_UNUSABLE_NAMES = ("", ".", "..")


class RemoteWalker:
    """Streams file entries below a root path.

    A page shorter than ``per_page`` ends a directory. Sub-directories are
    descended into as soon as they are seen, before the parent's remaining
    pages are fetched. Pages are fetched strictly one at a time.
    """

    def __init__(self, client: AlistClient, per_page: int | None = None):
        self._client = client
        self._per_page = per_page

    @property
    def per_page(self) -> int:
        return self._per_page or self._client.config.per_page

    async def walk(self, root: str, on_error: ErrorHandler | None = None) -> AsyncIterator[RemoteEntry]:
        """Yield every file below ``root``.

        A failure listing ``root`` itself propagates. A failure inside a
        sub-directory abandons that subtree and is reported to ``on_error``.
        """
        async for entry in self._walk_dir(root, on_error, is_root=True):
            yield entry

    async def _walk_dir(
        self, path: str, on_error: ErrorHandler | None, is_root: bool = False
    ) -> AsyncIterator[RemoteEntry]:
        per_page = self.per_page
        page = 1
        while True:
            try:
                entries = await self._client.list_page(path, page, per_page)
            except RemoteError as e:
                if is_root or on_error is None:
                    raise
                logger.warning("Skipping subtree %s: %s", path, e)
                on_error(path, e)
                return

            for entry in entries:
                if entry.is_dir:
                    if entry.name in _UNUSABLE_NAMES or "/" in entry.name:
                        # An empty name joins back to ``path`` itself
                        error = InvalidPathError(f"Directory entry without a usable name in {path!r}")
                        logger.warning("Skipping %s", error)
                        if on_error is not None:
                            on_error(entry.path, error)
                        continue
                    async for child in self._walk_dir(entry.path, on_error):
                        yield child
                else:
                    yield entry

            if len(entries) < per_page:
                return
            page += 1
