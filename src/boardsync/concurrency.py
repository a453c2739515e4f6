"""Async access to the boards API.

The engine talks to GitHub through the async :class:`BoardAPI` protocol.
:class:`AsyncBoardClient` satisfies it by running the blocking
``requests``-based :class:`~boardsync.github_rest.GitHubRestClient` in a
thread pool so one slow call never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from types import TracebackType
from typing import Any, Protocol, TypeVar

from .github_rest import GitHubRestClient
from .logging import get_logger

T = TypeVar('T')
R = TypeVar('R')


class BoardAPI(Protocol):  # pragma: no cover - interface only
    async def get_owner_type(self, login: str) -> str | None: ...

    async def list_org_projects(self, org: str) -> list[dict[str, Any]]: ...

    async def list_repo_projects(self, owner: str, repo: str) -> list[dict[str, Any]]: ...

    async def list_columns(self, project_id: int) -> list[dict[str, Any]]: ...

    async def list_cards(self, column_id: int) -> list[dict[str, Any]]: ...

    async def create_card(
        self, column_id: int, content_id: int, content_type: str
    ) -> dict[str, Any]: ...

    async def move_card(self, card_id: int, column_id: int, position: str = "top") -> None: ...

    async def list_pull_request_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[dict[str, Any]]: ...


class ConcurrencyConfig:
    """Configuration for concurrency settings."""

    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers


class AsyncBoardClient:
    """Async wrapper running :class:`GitHubRestClient` calls in a thread pool."""

    def __init__(self, rest: GitHubRestClient, concurrency_config: ConcurrencyConfig | None = None):
        self.rest = rest
        self.config = concurrency_config or ConcurrencyConfig()
        self.logger = get_logger()
        self._executor: ThreadPoolExecutor | None = None

    def __enter__(self) -> AsyncBoardClient:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers, thread_name_prefix="boardsync-api"
            )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def __aenter__(self) -> AsyncBoardClient:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        # Without an entered executor the loop's default pool is used
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def get_owner_type(self, login: str) -> str | None:
        return await self._call(self.rest.get_owner_type, login)

    async def list_org_projects(self, org: str) -> list[dict[str, Any]]:
        return await self._call(self.rest.list_org_projects, org, state="open")

    async def list_repo_projects(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self._call(self.rest.list_repo_projects, owner, repo, state="open")

    async def list_columns(self, project_id: int) -> list[dict[str, Any]]:
        return await self._call(self.rest.list_project_columns, project_id)

    async def list_cards(self, column_id: int) -> list[dict[str, Any]]:
        return await self._call(self.rest.list_column_cards, column_id)

    async def create_card(
        self, column_id: int, content_id: int, content_type: str
    ) -> dict[str, Any]:
        self.logger.debug("Creating card", column_id=column_id, content_type=content_type)
        return await self._call(
            self.rest.create_project_card,
            column_id=column_id,
            content_id=content_id,
            content_type=content_type,
        )

    async def move_card(self, card_id: int, column_id: int, position: str = "top") -> None:
        self.logger.debug("Moving card", card_id=card_id, column_id=column_id)
        await self._call(
            self.rest.move_project_card, card_id=card_id, column_id=column_id, position=position
        )

    async def list_pull_request_reviews(
        self, owner: str, repo: str, number: int
    ) -> list[dict[str, Any]]:
        return await self._call(self.rest.list_pull_request_reviews, owner, repo, number)


async def gather_settled(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    on_error: Callable[[T, BaseException], R],
) -> list[R]:
    """Run ``worker`` over ``items`` concurrently; failures become ``on_error`` results.

    One failing item never cancels or hides its siblings.
    """
    batch = list(items)
    if not batch:
        return []
    outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
    results: list[R] = []
    for item, outcome in zip(batch, outcomes):
        if isinstance(outcome, Exception):
            results.append(on_error(item, outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append(outcome)
    return results


__all__ = ["AsyncBoardClient", "BoardAPI", "ConcurrencyConfig", "gather_settled"]
