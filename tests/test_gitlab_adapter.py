from __future__ import annotations

import json

import httpx
import pytest

from app.errors import TransportError, UnsupportedEventError
from app.gitlab.client import GitLabAdapter
from app.scm.models import EventAction, EventType, Platform

ZERO = "0" * 40
DIFF = "@@ -1,2 +1,2 @@\n-old\n+new\n+more\n"


def _mr_payload(**attrs: object) -> dict[str, object]:
    object_attributes = {
        "iid": 7,
        "action": "open",
        "source_branch": "feature/x",
        "target_branch": "main",
        "url": "https://gitlab.example.com/group/repo/-/merge_requests/7",
        "last_commit": {"id": "c" * 40},
        "draft": False,
        "work_in_progress": False,
    }
    object_attributes.update(attrs)
    return {
        "object_kind": "merge_request",
        "user": {"username": "alice"},
        "project": {
            "id": 42,
            "name": "repo",
            "path_with_namespace": "group/repo",
            "web_url": "https://gitlab.example.com/group/repo",
        },
        "object_attributes": object_attributes,
    }


def _push_payload(before: str, after: str, commits: list[dict[str, object]]) -> dict[str, object]:
    return {
        "object_kind": "push",
        "before": before,
        "after": after,
        "ref": "refs/heads/feature/x",
        "user_username": "bob",
        "project_id": 42,
        "project": {"id": 42, "name": "repo", "path_with_namespace": "group/repo", "web_url": "https://gl/group/repo"},
        "commits": commits,
    }


async def _adapter(transport: httpx.MockTransport, retry_policy=None) -> GitLabAdapter:
    adapter = GitLabAdapter(transport=transport, retry_policy=retry_policy)
    await adapter.initialize("https://gitlab.example.com/", "private-token")
    return adapter


def test_parse_merge_request_event() -> None:
    event = GitLabAdapter().parse_event(_mr_payload(action="approved", work_in_progress=True))
    assert event.platform is Platform.GITLAB
    assert event.event_type is EventType.MERGE_REQUEST
    assert event.action is EventAction.UPDATE
    assert event.mr_id == 7
    assert event.project_id == "42"
    assert event.project_name == "group/repo"
    assert event.author == "alice"
    assert event.is_draft is True
    assert event.branch is None


def test_parse_push_event_derives_created_and_deleted() -> None:
    created = GitLabAdapter().parse_event(_push_payload(ZERO, "a" * 40, [{"id": "a" * 40, "message": "init"}]))
    assert created.event_type is EventType.PUSH
    assert created.branch == "feature/x"
    assert created.created is True
    assert created.deleted is False
    assert created.commits[0].title == "init"
    assert created.mr_id is None

    deleted = GitLabAdapter().parse_event(_push_payload("a" * 40, ZERO, []))
    assert deleted.deleted is True


def test_parse_note_is_comment_event() -> None:
    payload = {
        "object_kind": "note",
        "user": {"username": "carol"},
        "project": {"id": 42, "path_with_namespace": "group/repo"},
        "object_attributes": {"note": "LGTM", "noteable_type": "MergeRequest"},
    }
    event = GitLabAdapter().parse_event(payload)
    assert event.event_type is EventType.COMMENT
    assert event.mr_id is None and event.branch is None


def test_parse_unknown_kind_raises() -> None:
    with pytest.raises(UnsupportedEventError):
        GitLabAdapter().parse_event({"object_kind": "pipeline"})
    with pytest.raises(UnsupportedEventError):
        GitLabAdapter().parse_event({"object_kind": "merge_request", "project": {"id": 1}})


@pytest.mark.anyio
async def test_verify_token_accepts_secret_or_access_token() -> None:
    adapter = await _adapter(httpx.MockTransport(lambda request: httpx.Response(200)))
    assert adapter.verify_token("secret", "secret")
    assert adapter.verify_token("private-token", "secret")
    assert not adapter.verify_token("wrong", "secret")
    await adapter.aclose()


@pytest.mark.anyio
async def test_merge_request_changes_retry_and_count_lines(recording_transport, no_wait_retry) -> None:
    attempts = {"n": 0}

    def changes(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(502, text="bad gateway")
        assert request.url.params["access_raw_diffs"] == "true"
        assert request.headers["PRIVATE-TOKEN"] == "private-token"
        return httpx.Response(
            200,
            json={
                "changes": [
                    {"old_path": "a.py", "new_path": "a.py", "diff": DIFF},
                    {"old_path": "b.py", "new_path": "b.py", "diff": "-x", "deleted_file": True},
                ]
            },
        )

    transport = recording_transport({("GET", "/api/v4/projects/42/merge_requests/7/changes"): changes})
    adapter = await _adapter(transport.transport(), retry_policy=no_wait_retry)
    event = adapter.parse_event(_mr_payload())

    result = await adapter.get_merge_request_changes(event, 7)

    assert attempts["n"] == 2
    assert [(c.new_path, c.additions, c.deletions) for c in result] == [("a.py", 2, 1)]
    await adapter.aclose()


@pytest.mark.anyio
async def test_add_merge_request_note_posts_body(recording_transport) -> None:
    transport = recording_transport(
        {("POST", "/api/v4/projects/42/merge_requests/7/notes"): httpx.Response(201, json={"id": 1, "body": "x"})}
    )
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_mr_payload())

    await adapter.add_merge_request_note(event, 7, "## Score: 80/100")

    [request] = transport.requests
    assert json.loads(request.content) == {"body": "## Score: 80/100"}
    await adapter.aclose()


@pytest.mark.anyio
async def test_note_failure_raises_transport_error(recording_transport) -> None:
    transport = recording_transport({})
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_mr_payload())

    with pytest.raises(TransportError) as excinfo:
        await adapter.add_merge_request_note(event, 7, "x")
    assert excinfo.value.status_code == 404
    await adapter.aclose()


@pytest.mark.anyio
async def test_uninitialized_adapter_raises_transport_error() -> None:
    adapter = GitLabAdapter()
    event = adapter.parse_event(_mr_payload())
    with pytest.raises(TransportError):
        await adapter.add_merge_request_note(event, 7, "x")


@pytest.mark.anyio
async def test_push_changes_for_new_branch_uses_parent_of_first_commit(recording_transport) -> None:
    first, second = "1" * 40, "2" * 40
    transport = recording_transport(
        {
            ("GET", f"/api/v4/projects/42/repository/commits/{first}"): httpx.Response(
                200, json={"id": first, "parent_ids": ["p" * 40]}
            ),
            ("GET", "/api/v4/projects/42/repository/compare"): lambda request: httpx.Response(
                200,
                json={"diffs": [{"old_path": "x.py", "new_path": "x.py", "diff": "+a\n"}]}
                if request.url.params["from"] == "p" * 40 and request.url.params["to"] == second
                else {"diffs": []},
            ),
        }
    )
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_push_payload(ZERO, second, [{"id": first}, {"id": second}]))

    changes = await adapter.get_push_changes(event, "", second)

    assert [c.new_path for c in changes] == ["x.py"]
    assert [r.url.path for r in transport.requests] == [
        f"/api/v4/projects/42/repository/commits/{first}",
        "/api/v4/projects/42/repository/compare",
    ]
    await adapter.aclose()


@pytest.mark.anyio
async def test_push_changes_for_deleted_branch_makes_no_calls(recording_transport) -> None:
    transport = recording_transport({})
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_push_payload("a" * 40, ZERO, []))

    assert await adapter.get_push_changes(event, "", ZERO) == []
    assert transport.requests == []
    await adapter.aclose()


@pytest.mark.anyio
async def test_push_changes_without_parent_returns_empty(recording_transport) -> None:
    root = "1" * 40
    transport = recording_transport(
        {("GET", f"/api/v4/projects/42/repository/commits/{root}"): httpx.Response(200, json={"id": root})}
    )
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_push_payload(ZERO, root, [{"id": root}]))

    assert await adapter.get_push_changes(event, "", root) == []
    await adapter.aclose()


@pytest.mark.anyio
async def test_is_branch_protected_matches_wildcards(recording_transport) -> None:
    transport = recording_transport(
        {
            ("GET", "/api/v4/projects/42/protected_branches"): httpx.Response(
                200, json=[{"name": "main"}, {"name": "release/*"}, {"name": "v?.x"}]
            )
        }
    )
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_mr_payload())

    assert await adapter.is_branch_protected(event, "main")
    assert await adapter.is_branch_protected(event, "release/1.2")
    assert await adapter.is_branch_protected(event, "v1.x")
    assert not await adapter.is_branch_protected(event, "v10.x")
    assert not await adapter.is_branch_protected(event, "mainline")
    await adapter.aclose()


@pytest.mark.anyio
async def test_get_push_commits_filters_by_branch(recording_transport) -> None:
    def commits(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ref_name"] == "feature/x"
        return httpx.Response(
            200,
            json=[
                {
                    "id": "e" * 40,
                    "message": "fix: handle empty diff\n\nbody",
                    "author_name": "Bob",
                    "created_at": "2024-05-01T10:00:00Z",
                    "web_url": "https://gitlab.example.com/group/repo/-/commit/eee",
                }
            ],
        )

    transport = recording_transport({("GET", "/api/v4/projects/42/repository/commits"): commits})
    adapter = await _adapter(transport.transport())
    event = adapter.parse_event(_push_payload("a" * 40, "e" * 40, [{"id": "e" * 40}]))

    [commit] = await adapter.get_push_commits(event, "feature/x")

    assert commit.id == "e" * 40
    assert commit.short_id == "eeeeeeee"
    assert commit.title == "fix: handle empty diff"
    assert commit.author == "Bob"
    assert commit.url.endswith("/commit/eee")
    await adapter.aclose()
