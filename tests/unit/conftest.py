"""Shared fixtures for unit tests."""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from domain.entities.tag import LifeStatus, Tag
from domain.entities.tag_type import TagType


class FakeUnitOfWork:
    """Fake Unit of Work with a mocked tag repository."""

    def __init__(self) -> None:
        self.tags = AsyncMock()
        self.committed = False
        self.rolled_back = False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True

    async def __aenter__(self) -> "FakeUnitOfWork":
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass


def make_tag(
    tag_id: int = 1,
    tag_type: TagType = TagType.BUNDLE,
    tag_number: int = 1,
    **kwargs: Any,
) -> Tag:
    """Build a persisted-looking tag."""
    kwargs.setdefault("location_key_id", 7)
    kwargs.setdefault("status", LifeStatus.ACTIVE)
    return Tag(tag_type=tag_type, tag_number=tag_number, id=tag_id, **kwargs)


@pytest.fixture
def uow() -> FakeUnitOfWork:
    """Create a fresh FakeUnitOfWork."""
    return FakeUnitOfWork()
