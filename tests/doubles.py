"""
Test doubles for the notification components.

- InMemoryCollection: an async stand-in for a motor collection covering the
  query and update operators the repositories use
- FailingCollection: raises PyMongoError from every operation
- FakeTransport: records frames, probes and closes for one connection
- FakeUserDirectory: followers and display snapshots from plain dicts
"""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ServerSelectionTimeoutError

from review_notify.app.core.exceptions import StoreError
from review_notify.app.models.domain.notification import UserDisplaySnapshot


_MISSING = object()


def _get_path(document: Dict[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(document: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(_matches(document, sub_query) for sub_query in condition):
                return False
            continue

        value = _get_path(document, key)
        if isinstance(condition, dict) and "$in" in condition:
            if value is _MISSING or value not in condition["$in"]:
                return False
        elif value is _MISSING:
            if condition is not None:
                return False
        elif value != condition:
            return False
    return True


def _sort_key(value: Any):
    return (value is not None and value is not _MISSING, value if value is not _MISSING else None)


class InMemoryCursor:
    """Chainable cursor over a snapshot of documents."""

    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents
        self._skip = 0
        self._limit = 0

    def sort(self, keys):
        for key, direction in reversed(list(keys)):
            self._documents.sort(key=lambda d: _sort_key(_get_path(d, key)), reverse=direction < 0)
        return self

    def skip(self, count: int):
        self._skip = count
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        documents = self._documents[self._skip:]
        if self._limit:
            documents = documents[:self._limit]
        if length:
            documents = documents[:length]
        return [copy.deepcopy(document) for document in documents]


class InMemoryCollection:
    """Async collection double with the subset of the motor API the repositories use."""

    def __init__(self, name: str = "collection", documents: Optional[Iterable[Dict[str, Any]]] = None):
        self.name = name
        self.documents: List[Dict[str, Any]] = [copy.deepcopy(d) for d in documents or []]
        self.indexes: List[Dict[str, Any]] = []

    async def create_index(self, keys, **kwargs) -> str:
        self.indexes.append({"keys": keys, **kwargs})
        return kwargs.get("name", "index")

    async def insert_one(self, document: Dict[str, Any]):
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"], acknowledged=True)

    async def find_one(self, query: Dict[str, Any], projection: Optional[Dict[str, int]] = None):
        for document in self.documents:
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None) -> InMemoryCursor:
        query = query or {}
        return InMemoryCursor([d for d in self.documents if _matches(d, query)])

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return sum(1 for d in self.documents if _matches(d, query))

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        upsert: bool = False,
        return_document=ReturnDocument.BEFORE
    ):
        for document in self.documents:
            if _matches(document, query):
                before = copy.deepcopy(document)
                self._apply(document, update, inserting=False)
                return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before

        if not upsert:
            return None

        document = {k: v for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        self._apply(document, update, inserting=True)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else None

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any]):
        for document in self.documents:
            if _matches(document, query):
                self._apply(document, update, inserting=False)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query: Dict[str, Any], update: Dict[str, Any]):
        matched = [d for d in self.documents if _matches(d, query)]
        for document in matched:
            self._apply(document, update, inserting=False)
        return SimpleNamespace(matched_count=len(matched), modified_count=len(matched))

    async def delete_one(self, query: Dict[str, Any]):
        for index, document in enumerate(self.documents):
            if _matches(document, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: Dict[str, Any]):
        before = len(self.documents)
        self.documents = [d for d in self.documents if not _matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.documents))

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> InMemoryCursor:
        documents = [copy.deepcopy(d) for d in self.documents]
        for stage in pipeline:
            if "$match" in stage:
                documents = [d for d in documents if _matches(d, stage["$match"])]
            elif "$group" in stage:
                field = stage["$group"]["_id"].lstrip("$")
                groups: Dict[Any, int] = {}
                for document in documents:
                    key = _get_path(document, field)
                    groups[key] = groups.get(key, 0) + 1
                documents = [{"_id": key, "count": count} for key, count in groups.items()]
        return InMemoryCursor(documents)

    @staticmethod
    def _apply(document: Dict[str, Any], update: Dict[str, Any], inserting: bool) -> None:
        for path, value in update.get("$set", {}).items():
            _set_path(document, path, copy.deepcopy(value))
        if inserting:
            for path, value in update.get("$setOnInsert", {}).items():
                _set_path(document, path, copy.deepcopy(value))


class FailingCollection:
    """Collection double whose every operation fails like an unreachable server."""

    name = "failing"

    def __getattr__(self, item):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("No servers available")

        async def fail_async(*args, **kwargs):
            fail()

        if item in ("find", "aggregate"):
            return fail
        return fail_async


class FakeTransport:
    """Records what the server pushed to one client."""

    def __init__(self, fail_send: bool = False, fail_ping: bool = False, hang_send: bool = False):
        self.fail_send = fail_send
        self.fail_ping = fail_ping
        self.hang_send = hang_send
        self.sent: List[Dict[str, Any]] = []
        self.pings = 0
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_calls = 0

    async def send(self, message: Dict[str, Any]) -> None:
        if self.fail_send:
            raise ConnectionError("socket is gone")
        if self.hang_send:
            await asyncio.sleep(3600)
        self.sent.append(message)

    async def ping(self) -> None:
        if self.fail_ping:
            raise ConnectionError("socket is gone")
        self.pings += 1

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        self.closed = True
        self.close_code = code

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]


class FakeUserDirectory:
    """UserDirectory built from dicts."""

    def __init__(
        self,
        followers: Optional[Dict[str, Iterable[str]]] = None,
        profiles: Optional[Dict[str, Dict[str, str]]] = None,
        fail: bool = False,
        lookup_delay: float = 0
    ):
        self._followers = {user: set(ids) for user, ids in (followers or {}).items()}
        self._profiles = profiles or {}
        self.fail = fail
        self.lookup_delay = lookup_delay

    async def followers(self, user_id: str):
        if self.fail:
            raise StoreError("User lookup failed")
        return set(self._followers.get(user_id, set()))

    async def display_snapshot(self, user_id: str):
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        if self.fail:
            raise StoreError("User lookup failed")
        profile = self._profiles.get(user_id)
        if profile is None:
            return None
        return UserDisplaySnapshot(
            user_id=user_id,
            display_name=profile.get("displayName"),
            avatar_ref=profile.get("profileImage")
        )

    async def exists(self, user_id: str) -> bool:
        return user_id in self._profiles or user_id in self._followers

