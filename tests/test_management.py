import json

import httpx
import pytest

from ntcli.api._http import extract_error_detail
from ntcli.api.management import ManagementClient, extract_workspace_uuid
from ntcli.exceptions import (
    AuthRejectedError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
)

API_URL = "https://api.example.com"
WORKSPACE_UUID = "0f8fad5b-d9cb-469f-a165-70867728950e"


@pytest.fixture
def api(endpoints):
    with ManagementClient(endpoints.management, "platform-token") as client:
        yield client


@pytest.mark.parametrize(
    "workspace_id, expected",
    [
        (f"teamA-{WORKSPACE_UUID}", WORKSPACE_UUID),
        (f"my-team-a-{WORKSPACE_UUID}", WORKSPACE_UUID),
        (WORKSPACE_UUID, WORKSPACE_UUID),
        ("ws_123", "ws_123"),
    ],
)
def test_extract_workspace_uuid(workspace_id, expected):
    assert extract_workspace_uuid(workspace_id) == expected


@pytest.mark.parametrize(
    "response, expected",
    [
        (httpx.Response(400, json={"detail": "Bad name"}), "Bad name"),
        (httpx.Response(400, json={"message": "Bad name"}), "Bad name"),
        (httpx.Response(400, json={"error": {"message": "Bad name"}}), "Bad name"),
        (httpx.Response(400, json={"error": "invalid_grant"}), "invalid_grant"),
        (httpx.Response(400, text="plain failure"), "plain failure"),
        (httpx.Response(400), None),
    ],
)
def test_extract_error_detail(response, expected):
    assert extract_error_detail(response) == expected


def test_list_workspaces(api, respx_mock):
    route = respx_mock.get(f"{API_URL}/v1/workspaces").mock(
        return_value=httpx.Response(
            200,
            json={
                "workspaces": [
                    {"workspace_id": "ws_123", "workspace_name": "teamA"},
                    {"id": "ws_456", "name": "teamB", "created": "2024-01-01"},
                ]
            },
        )
    )

    workspaces = api.list_workspaces()

    assert [(w.workspace_id, w.workspace_name) for w in workspaces] == [
        ("ws_123", "teamA"),
        ("ws_456", "teamB"),
    ]
    assert workspaces[1].created == "2024-01-01"
    assert route.calls.last.request.headers["Authorization"] == "Bearer platform-token"


@pytest.mark.parametrize(
    "body",
    [
        {"items": []},
        {"workspaces": "teamA"},
        {"workspaces": [{"workspace_name": "no id"}]},
    ],
)
def test_list_workspaces_malformed(api, respx_mock, body):
    respx_mock.get(f"{API_URL}/v1/workspaces").mock(
        return_value=httpx.Response(200, json=body)
    )
    with pytest.raises(MalformedResponseError):
        api.list_workspaces()


def test_list_workspaces_rejected(api, respx_mock):
    respx_mock.get(f"{API_URL}/v1/workspaces").mock(
        return_value=httpx.Response(401, json={"detail": "Token expired"})
    )
    with pytest.raises(AuthRejectedError) as exc_info:
        api.list_workspaces()
    assert "List workspaces failed" in str(exc_info.value)
    assert "Token expired" in str(exc_info.value)


def test_list_workspaces_network_error(api, respx_mock):
    respx_mock.get(f"{API_URL}/v1/workspaces").mock(side_effect=httpx.ConnectTimeout)
    with pytest.raises(NetworkError):
        api.list_workspaces()


def test_create_workspace(api, respx_mock):
    route = respx_mock.post(f"{API_URL}/v1/workspaces").mock(
        return_value=httpx.Response(
            201,
            json={
                "workspace_id": f"teamA-{WORKSPACE_UUID}",
                "workspace_name": "teamA",
                "access_token": "ws-token",
                "expires_in": 3600,
                "scope": ["workspace:read", "workspace:write"],
            },
        )
    )

    created = api.create_workspace("teamA", description="Team A")

    assert json.loads(route.calls.last.request.content) == {
        "name": "teamA",
        "description": "Team A",
    }
    grant = created.token_grant()
    assert grant is not None
    assert grant.access_token == "ws-token"
    assert grant.expires_in == 3600
    assert grant.scope == ["workspace:read", "workspace:write"]


def test_create_workspace_without_token(api, respx_mock):
    respx_mock.post(f"{API_URL}/v1/workspaces").mock(
        return_value=httpx.Response(201, json={"id": "ws_1", "name": "teamA"})
    )
    assert api.create_workspace("teamA").token_grant() is None


def test_delete_workspace_uses_uuid(api, respx_mock):
    route = respx_mock.delete(f"{API_URL}/v1/workspaces/{WORKSPACE_UUID}").mock(
        return_value=httpx.Response(204)
    )
    assert api.delete_workspace(f"teamA-{WORKSPACE_UUID}") is None
    assert route.called


def test_delete_missing_workspace(api, respx_mock):
    respx_mock.delete(f"{API_URL}/v1/workspaces/ws_123").mock(
        return_value=httpx.Response(404, json={"detail": "Workspace not found"})
    )
    with pytest.raises(NotFoundError) as exc_info:
        api.delete_workspace("ws_123")
    assert exc_info.value.status_code == 404


def test_issue_workspace_token(api, respx_mock):
    route = respx_mock.post(f"{API_URL}/v1/workspaces/{WORKSPACE_UUID}/tokens").mock(
        return_value=httpx.Response(
            200,
            json={
                "access_token": "ws-token",
                "token_type": "Bearer",
                "expires_in": 600,
                "jti": "jti-1",
            },
        )
    )

    grant = api.issue_workspace_token(f"teamA-{WORKSPACE_UUID}", expires_in=600)

    assert json.loads(route.calls.last.request.content) == {"expires_in": 600}
    assert grant.access_token == "ws-token"
    assert grant.jti == "jti-1"
    assert grant.scope == []


def test_issue_non_expiring_token(api, respx_mock):
    respx_mock.post(f"{API_URL}/v1/workspaces/ws_123/tokens").mock(
        return_value=httpx.Response(200, json={"access_token": "ws-token"})
    )
    assert api.issue_workspace_token("ws_123").expires_in is None


def test_issue_token_with_absolute_expiry(api, respx_mock):
    route = respx_mock.post(f"{API_URL}/v1/workspaces/ws_123/tokens").mock(
        return_value=httpx.Response(
            200, json={"access_token": "ws-token", "expires_in": 3600}
        )
    )

    api.issue_workspace_token("ws_123", expires_at=1893456000)

    assert json.loads(route.calls.last.request.content) == {"expires_at": 1893456000}


def test_list_workspace_tokens(api, respx_mock):
    route = respx_mock.get(f"{API_URL}/v1/workspaces/{WORKSPACE_UUID}/tokens").mock(
        return_value=httpx.Response(
            200,
            json={
                "workspace_id": WORKSPACE_UUID,
                "tokens": [
                    {"jti": "jti-1", "created_at": 1704067200},
                    {"jti": "jti-2"},
                ],
                "count": 2,
            },
        )
    )

    tokens = api.list_workspace_tokens(f"teamA-{WORKSPACE_UUID}")

    assert [t.jti for t in tokens] == ["jti-1", "jti-2"]
    assert tokens[0].created_at == 1704067200
    assert tokens[1].created_at is None
    assert route.calls.last.request.headers["Authorization"] == "Bearer platform-token"


@pytest.mark.parametrize(
    "body", [{"count": 0}, {"tokens": "none"}, {"tokens": [{"created_at": 1}]}]
)
def test_list_workspace_tokens_malformed(api, respx_mock, body):
    respx_mock.get(f"{API_URL}/v1/workspaces/ws_123/tokens").mock(
        return_value=httpx.Response(200, json=body)
    )
    with pytest.raises(MalformedResponseError):
        api.list_workspace_tokens("ws_123")


def test_revoke_workspace_token(api, respx_mock):
    route = respx_mock.post(
        f"{API_URL}/v1/workspaces/{WORKSPACE_UUID}/tokens/jti-1/revoke"
    ).mock(return_value=httpx.Response(200, json={"message": "Token revoked"}))

    message = api.revoke_workspace_token(f"teamA-{WORKSPACE_UUID}", "jti-1")

    assert message == "Token revoked"
    assert route.call_count == 1


def test_revoke_workspace_token_without_body(api, respx_mock):
    respx_mock.post(f"{API_URL}/v1/workspaces/ws_123/tokens/jti-1/revoke").mock(
        return_value=httpx.Response(204)
    )
    assert api.revoke_workspace_token("ws_123", "jti-1") is None


def test_revoke_unknown_token(api, respx_mock):
    respx_mock.post(f"{API_URL}/v1/workspaces/ws_123/tokens/jti-x/revoke").mock(
        return_value=httpx.Response(404, json={"detail": "Token not found"})
    )
    with pytest.raises(NotFoundError) as exc_info:
        api.revoke_workspace_token("ws_123", "jti-x")
    assert exc_info.value.detail == "Token not found"


def test_client_is_created_lazily(endpoints):
    api = ManagementClient(endpoints.management, "platform-token")
    assert api._client is None
    api.close()
    assert api._client is None
