"""Shared test fixtures for cloudkit-utility tests.

Provides fake adapters (see tests/fakes.py) and a service wired to them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import pytest

from cloudkit_core.adapters.codec import EntityCodec, entity_codec
from cloudkit_core.service import CloudKitService

from .fakes import (
    Collected,
    FakeContainer,
    FakePermissionAuthority,
    TaskItem,
    collect_observable,
    task_record,
)


@pytest.fixture
def container() -> FakeContainer:
    """Empty in-memory container."""
    return FakeContainer()


@pytest.fixture
def task_codec() -> EntityCodec[TaskItem]:
    return entity_codec(TaskItem)


@pytest.fixture
def permissions() -> FakePermissionAuthority:
    return FakePermissionAuthority()


@pytest.fixture
def service(
    container: FakeContainer,
    task_codec: EntityCodec[TaskItem],
    permissions: FakePermissionAuthority,
) -> CloudKitService:
    """Service over the fake container with TaskItem as the default entity."""
    return CloudKitService(container, codec=task_codec, permissions=permissions)


@pytest.fixture
def seeded(container: FakeContainer) -> FakeContainer:
    """Container holding 15 Task records; 12 open, every fifth one done."""
    container.add(
        *(
            task_record(i, status="done" if i % 5 == 0 else "open")
            for i in range(1, 16)
        )
    )
    return container


@pytest.fixture
def collect() -> Callable[..., Awaitable[Collected]]:
    return collect_observable
