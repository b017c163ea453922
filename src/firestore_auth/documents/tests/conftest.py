"""Shared fixtures for document tests: an in-memory Firestore REST fake."""

import json
from typing import Any

import httpx
import pytest

from firestore_auth.auth.sessions import ServiceSession

TIMESTAMP = "2024-05-01T10:20:30.123456789Z"


class FakeFirestore:
    """
    Minimal in-memory emulation of the Firestore v1 REST document API.

    Supports get, list with pagination, create, replace, masked update,
    delete with existence precondition and single field filter queries.
    """

    def __init__(self, project_id: str):
        self.root = f"projects/{project_id}/databases/(default)/documents"
        self.store: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self._generated = 0

    def _error(self, code: int, message: str, status: str) -> httpx.Response:
        return httpx.Response(code, json={"error": {"code": code, "message": message, "status": status}})

    def _children(self, collection: str) -> list[dict[str, Any]]:
        prefix = f"{collection}/"
        return [
            doc
            for name, doc in sorted(self.store.items())
            if name.startswith(prefix) and "/" not in name[len(prefix):]
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return self._error(401, "Missing credentials", "UNAUTHENTICATED")

        name = request.url.path.removeprefix("/v1/")
        if name.endswith(":runQuery"):
            return self._run_query(json.loads(request.content))

        is_collection = len(name[len(self.root) + 1:].split("/")) % 2 == 1
        exists_required = request.url.params.get("currentDocument.exists") == "true"

        if request.method == "GET":
            if is_collection:
                return self._list(name, request.url.params)
            if name not in self.store:
                return self._error(404, f"Document \"{name}\" not found.", "NOT_FOUND")
            return httpx.Response(200, json=self.store[name])

        if request.method == "DELETE":
            if exists_required and name not in self.store:
                return self._error(404, f"No document to update: {name}", "NOT_FOUND")
            self.store.pop(name, None)
            return httpx.Response(200, json={})

        fields = json.loads(request.content).get("fields", {})
        if request.method == "POST":
            self._generated += 1
            name = f"{name}/generated{self._generated}"

        if exists_required and name not in self.store:
            return self._error(404, f"No document to update: {name}", "NOT_FOUND")

        mask = request.url.params.get_list("updateMask.fieldPaths")
        previous = self.store.get(name)
        if mask and previous is not None:
            merged = dict(previous.get("fields", {}))
            for path in mask:
                if path in fields:
                    merged[path] = fields[path]
                else:
                    merged.pop(path, None)
            fields = merged

        self.store[name] = {
            "name": name,
            "fields": fields,
            "createTime": previous["createTime"] if previous else TIMESTAMP,
            "updateTime": TIMESTAMP,
        }
        return httpx.Response(200, json=self.store[name])

    def _list(self, collection: str, params: httpx.QueryParams) -> httpx.Response:
        documents = self._children(collection)
        start = int(params.get("pageToken", "0"))
        size = int(params.get("pageSize", "300"))
        page = documents[start : start + size]
        body: dict[str, Any] = {"documents": page} if page else {}
        if start + size < len(documents):
            body["nextPageToken"] = str(start + size)
        return httpx.Response(200, json=body)

    def _run_query(self, body: dict[str, Any]) -> httpx.Response:
        query = body["structuredQuery"]
        collection = f"{self.root}/{query['from'][0]['collectionId']}"
        field_filter = query["where"]["fieldFilter"]
        assert field_filter["op"] == "EQUAL", "fake only supports EQUAL"

        results = [
            {"document": doc, "readTime": TIMESTAMP}
            for doc in self._children(collection)
            if doc.get("fields", {}).get(field_filter["field"]["fieldPath"]) == field_filter["value"]
        ]
        # An empty result still carries one element with only a read time
        return httpx.Response(200, json=results or [{"readTime": TIMESTAMP}])


@pytest.fixture
def firestore() -> FakeFirestore:
    """Provide an empty in-memory Firestore for project 'p'."""
    return FakeFirestore("p")


@pytest.fixture
def session(credentials, firestore, mock_client) -> ServiceSession:
    """Provide a service account session talking to the fake."""
    return ServiceSession(credentials, mock_client(firestore))
