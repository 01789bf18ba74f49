import pytest

from hexstash.session import Session
from hexstash.storage import MemoryStorage
from hexstash.store import ChunkedStore


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return ChunkedStore(storage)


@pytest.fixture
def session(store):
    return Session(store)
