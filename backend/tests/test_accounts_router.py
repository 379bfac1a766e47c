"""API tests for the accounts and OAuth routers."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from models.account_snapshot import AccountSnapshot
from models.instagram_account import InstagramAccount
from services.snapshot_writer import today_utc
from services.token_crypto import decrypt_token, encrypt_token
from tests.conftest import (
    ACCESS_TOKEN,
    GRAPH_HOST,
    GRAPH_PREFIX,
    IG_USER_ID,
    OTHER_OWNER_ID,
    OWNER_ID,
    make_jwt,
)

PROFILE = {
    "user_id": IG_USER_ID,
    "username": "studio.test",
    "name": "Studio Test",
    "account_type": "BUSINESS",
    "followers_count": 1000,
    "follows_count": 150,
    "media_count": 42,
}


def _insights_response(request: httpx.Request) -> httpx.Response:
    metrics = request.url.params["metric"].split(",")
    return httpx.Response(
        200,
        json={"data": [{"name": m, "values": [{"value": 100}]} for m in metrics]},
    )


@pytest.mark.asyncio
async def test_list_accounts_hides_tokens(client, account):
    response = await client.get("/api/accounts")

    assert response.status_code == 200
    [payload] = response.json()
    assert payload["id"] == account.id
    assert payload["username"] == "studio.test"
    assert payload["token_valid"] is True
    assert "access_token" not in payload


@pytest.mark.asyncio
@pytest.mark.respx(assert_all_called=False)
async def test_unknown_account_is_404_without_upstream_calls(client, account, respx_mock):
    route = respx_mock.get(host=GRAPH_HOST)

    for path in (
        "/api/accounts/missing/profile",
        "/api/accounts/missing/media",
        "/api/accounts/missing/media/detailed",
        "/api/accounts/missing/demographics",
    ):
        response = await client.get(path)
        assert response.status_code == 404
        assert response.json()["detail"] == "Account not found"

    assert route.call_count == 0


@pytest.mark.asyncio
async def test_accounts_are_scoped_to_their_owner(client, session_maker, account):
    async with session_maker() as db:
        db.add(InstagramAccount(
            owner_user_id=OTHER_OWNER_ID,
            ig_user_id="999",
            username="someone.else",
            access_token=encrypt_token("other-token"),
        ))
        await db.commit()
        result = await db.execute(
            select(InstagramAccount).where(InstagramAccount.owner_user_id == OTHER_OWNER_ID)
        )
        other = result.scalar_one()

    response = await client.get("/api/accounts")
    assert [a["username"] for a in response.json()] == ["studio.test"]

    response = await client.delete(f"/api/accounts/{other.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_requests_need_a_valid_bearer_token():
    from main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as anon:
        response = await anon.get("/api/accounts")
        assert response.status_code in (401, 403)

        response = await anon.get(
            "/api/accounts", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401


@pytest.mark.asyncio
async def test_delete_account_removes_snapshots(client, session_maker, account):
    async with session_maker() as db:
        db.add(AccountSnapshot(account_id=account.id, snapshot_date=today_utc()))
        await db.commit()

    response = await client.delete(f"/api/accounts/{account.id}")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    async with session_maker() as db:
        assert (await db.execute(select(InstagramAccount))).scalars().all() == []
        assert (await db.execute(select(AccountSnapshot))).scalars().all() == []


@pytest.mark.asyncio
async def test_media_returns_empty_list_when_every_attempt_fails(client, account, respx_mock):
    respx_mock.get(host=GRAPH_HOST).mock(
        return_value=httpx.Response(400, json={"error": {"message": "nope", "code": 100}})
    )

    response = await client.get(f"/api/accounts/{account.id}/media")

    assert response.status_code == 200
    assert response.json() == {"data": []}


@pytest.mark.asyncio
async def test_detailed_media_enriches_and_snapshots(client, session_maker, account, respx_mock):
    media = [
        {"id": "m1", "media_type": "IMAGE", "like_count": 10, "comments_count": 1},
        {"id": "m2", "media_type": "VIDEO", "media_product_type": "REELS",
         "like_count": 20, "comments_count": 2},
    ]
    listing = respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/{IG_USER_ID}/media").mock(
        return_value=httpx.Response(200, json={"data": media})
    )
    insights = respx_mock.get(host=GRAPH_HOST, path__regex=r".*/m\d/insights$").mock(
        side_effect=_insights_response
    )

    response = await client.get(f"/api/accounts/{account.id}/media/detailed", params={"limit": 10})

    assert response.status_code == 200
    payload = response.json()
    assert payload["fetched_count"] == 2
    assert payload["followers_count"] == 1000
    assert payload["source_endpoint"] == f"{IG_USER_ID}/media"
    by_id = {item["id"]: item for item in payload["items"]}
    assert by_id["m1"]["insights"]["reach"] == 100
    assert "views" in by_id["m2"]["insights"]
    assert "views" not in by_id["m1"]["insights"]
    assert listing.call_count == 1
    assert insights.call_count == 2

    async with session_maker() as db:
        snapshot = (await db.execute(select(AccountSnapshot))).scalar_one()
    assert snapshot.snapshot_date == today_utc()
    assert snapshot.total_likes == 30
    assert snapshot.total_comments == 3
    assert snapshot.avg_engagement_rate == pytest.approx(1.65)
    assert snapshot.avg_reach == pytest.approx(100)


@pytest.mark.asyncio
async def test_profile_refresh_persists_counts(client, session_maker, account, respx_mock):
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/me").mock(
        return_value=httpx.Response(200, json={**PROFILE, "followers_count": 1300, "biography": "hi"})
    )

    response = await client.get(f"/api/accounts/{account.id}/profile")

    assert response.status_code == 200
    assert response.json()["followers_count"] == 1300
    async with session_maker() as db:
        stored = await db.get(InstagramAccount, account.id)
        snapshot = (await db.execute(select(AccountSnapshot))).scalar_one()
    assert stored.followers_count == 1300
    assert stored.biography == "hi"
    assert snapshot.followers_count == 1300


@pytest.mark.asyncio
async def test_upstream_errors_keep_their_status_and_code(client, account, respx_mock):
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/me/insights").mock(
        return_value=httpx.Response(
            403,
            json={"error": {"message": "Insufficient permission", "type": "OAuthException", "code": 10}},
        )
    )

    response = await client.get(f"/api/accounts/{account.id}/demographics")

    assert response.status_code == 403
    assert response.json() == {
        "error": "Insufficient permission",
        "type": "OAuthException",
        "code": 10,
    }


@pytest.mark.asyncio
async def test_refresh_token_stores_new_encrypted_token(client, session_maker, account, respx_mock):
    route = respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/refresh_access_token").mock(
        return_value=httpx.Response(
            200, json={"access_token": "IGAA-refreshed", "token_type": "bearer", "expires_in": 5184000}
        )
    )

    response = await client.post(f"/api/accounts/{account.id}/refresh-token")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "expires_in": 5184000}
    assert route.calls.last.request.url.params["access_token"] == ACCESS_TOKEN
    async with session_maker() as db:
        stored = await db.get(InstagramAccount, account.id)
    assert stored.access_token != "IGAA-refreshed"
    assert decrypt_token(stored.access_token) == "IGAA-refreshed"


@pytest.mark.asyncio
async def test_snapshot_history_newest_first(client, session_maker, account):
    today = today_utc()
    async with session_maker() as db:
        for days_ago, followers in ((2, 900), (0, 1000), (1, 950), (90, 500)):
            db.add(AccountSnapshot(
                account_id=account.id,
                snapshot_date=today - timedelta(days=days_ago),
                followers_count=followers,
            ))
        await db.commit()

    response = await client.get(f"/api/accounts/{account.id}/snapshots", params={"days": 30})

    assert response.status_code == 200
    assert [s["followers_count"] for s in response.json()] == [1000, 950, 900]


@pytest.mark.asyncio
async def test_oauth_flow_connects_and_reconnects(client, session_maker, respx_mock):
    respx_mock.post("https://api.instagram.com/oauth/access_token").mock(
        return_value=httpx.Response(200, json={"access_token": "short-token", "user_id": IG_USER_ID})
    )
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/access_token").mock(
        return_value=httpx.Response(200, json={"access_token": "long-token", "expires_in": 5184000})
    )
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/me").mock(
        return_value=httpx.Response(200, json=PROFILE)
    )

    for _ in range(2):
        response = await client.get("/auth/login")
        assert response.status_code == 200
        state = parse_qs(urlparse(response.json()["auth_url"]).query)["state"][0]

        response = await client.get("/auth/callback", params={"code": "abc", "state": state})
        assert response.status_code == 302
        assert response.headers["location"] == "/?connected=studio.test"

    async with session_maker() as db:
        [account] = (await db.execute(select(InstagramAccount))).scalars().all()
        snapshots = (await db.execute(select(AccountSnapshot))).scalars().all()
    assert account.ig_user_id == IG_USER_ID
    assert account.followers_count == 1000
    assert decrypt_token(account.access_token) == "long-token"
    expires_at = account.token_expires_at.replace(tzinfo=timezone.utc)
    assert expires_at > datetime.now(timezone.utc) + timedelta(days=59)
    assert len(snapshots) == 1


@pytest.mark.asyncio
@pytest.mark.respx(assert_all_called=False)
async def test_oauth_callback_rejects_bad_state(client, respx_mock):
    route = respx_mock.post("https://api.instagram.com/oauth/access_token")

    response = await client.get("/auth/callback", params={"code": "abc", "state": "forged"})

    assert response.status_code == 302
    assert response.headers["location"].startswith("/?error=")
    assert route.call_count == 0


@pytest.mark.asyncio
async def test_oauth_callback_reports_provider_errors(client):
    response = await client.get(
        "/auth/callback",
        params={"error": "access_denied", "error_description": "User denied"},
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/?error=User%20denied"


@pytest.mark.asyncio
async def test_health_and_privacy(client):
    assert (await client.get("/health")).json()["status"] == "healthy"
    response = await client.get("/privacy")
    assert response.status_code == 200
    assert "Privacy Policy" in response.text


def test_jwt_helper_round_trip():
    from middleware.auth import decode_user_id

    assert decode_user_id(make_jwt("abc")) == "abc"
    assert decode_user_id("garbage") is None


@pytest.mark.asyncio
async def test_oauth_connect_survives_snapshot_failure(client, session_maker, respx_mock, monkeypatch):
    import services.snapshot_writer as snapshot_writer

    async def failing_upsert(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(snapshot_writer, "upsert_snapshot", failing_upsert)
    respx_mock.post("https://api.instagram.com/oauth/access_token").mock(
        return_value=httpx.Response(200, json={"access_token": "short-token", "user_id": IG_USER_ID})
    )
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/access_token").mock(
        return_value=httpx.Response(200, json={"access_token": "long-token", "expires_in": 5184000})
    )
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/me").mock(
        return_value=httpx.Response(200, json=PROFILE)
    )

    response = await client.get("/auth/login")
    state = parse_qs(urlparse(response.json()["auth_url"]).query)["state"][0]
    response = await client.get("/auth/callback", params={"code": "abc", "state": state})

    assert response.status_code == 302
    assert response.headers["location"] == "/?connected=studio.test"
    async with session_maker() as db:
        [account] = (await db.execute(select(InstagramAccount))).scalars().all()
        snapshots = (await db.execute(select(AccountSnapshot))).scalars().all()
    assert account.username == "studio.test"
    assert snapshots == []


@pytest.mark.asyncio
async def test_media_passes_paging_through(client, account, respx_mock):
    paging = {"cursors": {"before": "QVFI", "after": "QVFJ"}}
    respx_mock.get(host=GRAPH_HOST, path=f"{GRAPH_PREFIX}/{IG_USER_ID}/media").mock(
        return_value=httpx.Response(200, json={"data": [{"id": "m1"}], "paging": paging})
    )

    response = await client.get(f"/api/accounts/{account.id}/media", params={"limit": 1})

    assert response.status_code == 200
    assert response.json() == {"data": [{"id": "m1"}], "paging": paging}


@pytest.mark.asyncio
async def test_media_survives_null_data(client, account, respx_mock):
    respx_mock.get(host=GRAPH_HOST).mock(return_value=httpx.Response(200, json={"data": None}))

    response = await client.get(f"/api/accounts/{account.id}/media")

    assert response.status_code == 200
    assert response.json() == {"data": []}


@pytest.mark.asyncio
@pytest.mark.respx(assert_all_called=False)
async def test_unreadable_token_is_409_without_upstream_calls(client, session_maker, respx_mock):
    async with session_maker() as db:
        broken = InstagramAccount(
            owner_user_id=OWNER_ID,
            ig_user_id="555",
            username="broken.key",
            access_token="not-a-fernet-token",
        )
        db.add(broken)
        await db.commit()
        await db.refresh(broken)
    route = respx_mock.get(host=GRAPH_HOST)

    for path in ("media", "media/detailed", "demographics", "insights"):
        response = await client.get(f"/api/accounts/{broken.id}/{path}")
        assert response.status_code == 409
        assert "Reconnect" in response.json()["error"]

    assert route.call_count == 0
