"""
Tests for the HTTP API, driven through httpx.ASGITransport.
"""
import httpx
import pytest
import pytest_asyncio

from polychat.core.config import settings
from polychat.core.database import get_db
from polychat.main import app


@pytest_asyncio.fixture
async def api(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def create_conversation(api, title="API chat"):
    response = await api.post(
        "/api/conversations",
        json={"title": title, "provider": "openai", "model": "gpt-4o"},
    )
    assert response.status_code == 200
    return response.json()


async def append(api, conversation_id, role, content, **extra):
    response = await api.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"role": role, "content": content, **extra},
    )
    assert response.status_code == 200
    return response.json()


class TestConversationEndpoints:
    """Conversation CRUD over HTTP."""

    @pytest.mark.asyncio
    async def test_health(self, api):
        response = await api.get("/health")
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_create_list_get(self, api):
        created = await create_conversation(api)

        listed = (await api.get("/api/conversations")).json()
        assert [c["id"] for c in listed] == [created["id"]]

        fetched = await api.get(f"/api/conversations/{created['id']}")
        assert fetched.json()["title"] == "API chat"
        assert fetched.json()["createdAt"] == fetched.json()["updatedAt"]

    @pytest.mark.asyncio
    async def test_unknown_provider_is_rejected(self, api):
        response = await api.post(
            "/api/conversations",
            json={"title": "x", "provider": "mistral", "model": "m"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_and_archive(self, api):
        created = await create_conversation(api)

        updated = await api.patch(f"/api/conversations/{created['id']}", json={"title": "Renamed"})
        assert updated.json()["title"] == "Renamed"
        assert updated.json()["updatedAt"] > created["updatedAt"]

        archived = await api.post(f"/api/conversations/{created['id']}/archive")
        assert archived.json()["isArchived"] is True
        assert (await api.get("/api/conversations")).json() == []

    @pytest.mark.asyncio
    async def test_missing_conversation_is_404(self, api):
        assert (await api.get("/api/conversations/missing")).status_code == 404
        assert (await api.patch("/api/conversations/missing", json={"title": "x"})).status_code == 404
        assert (await api.delete("/api/conversations/missing")).status_code == 404
        response = await api.post(
            "/api/conversations/missing/messages",
            json={"role": "user", "content": "hi"},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_reports_messages(self, api):
        created = await create_conversation(api)
        await append(api, created["id"], "user", "hi")
        await append(api, created["id"], "assistant", "hello")

        response = await api.delete(f"/api/conversations/{created['id']}")
        assert response.json()["messagesDeleted"] == 2

    @pytest.mark.asyncio
    async def test_search(self, api):
        created = await create_conversation(api, "Weekend hiking")
        await create_conversation(api, "Taxes")
        await append(api, created["id"], "user", "Which TRAIL is best?")

        titles = (await api.get("/api/conversations/search", params={"q": "hik"})).json()
        assert [c["title"] for c in titles] == ["Weekend hiking"]

        hits = (await api.get("/api/messages/search", params={"q": "trail"})).json()
        assert hits[0]["conversation"]["id"] == created["id"]


class TestBranchEndpoints:
    """Branch creation and views over HTTP."""

    @pytest.mark.asyncio
    async def test_branch_flow(self, api):
        created = await create_conversation(api)
        question = await append(api, created["id"], "user", "Pick a number")
        answer = await append(api, created["id"], "assistant", "7")

        branch = await api.post(
            f"/api/conversations/{created['id']}/branches",
            json={
                "parentMessageId": question["id"],
                "content": "Pick a number",
                "provider": "anthropic",
                "model": "claude-3-haiku-20240307",
            },
        )
        handle = branch.json()

        reply = await api.post(
            f"/api/conversations/{created['id']}/branches/{handle['threadId']}/responses",
            json={
                "userMessageId": handle["messageId"],
                "content": "42",
                "provider": "anthropic",
                "model": "claude-3-haiku-20240307",
            },
        )
        alternate = reply.json()
        assert alternate["threadId"] == handle["threadId"]

        point = await api.get(
            f"/api/conversations/{created['id']}/messages/{question['id']}/branches"
        )
        replies = {m["id"] for m in point.json() if m["role"] == "assistant"}
        assert replies == {answer["id"], alternate["id"]}

        threads = (await api.get(f"/api/conversations/{created['id']}/threads")).json()
        assert len(threads) == 1
        assert len(threads[0]["messages"]) == 2

        main = await api.get(
            f"/api/conversations/{created['id']}/messages",
            params={"mainThreadOnly": "true"},
        )
        assert [m["id"] for m in main.json()] == [question["id"], answer["id"]]

        tree = (await api.get(f"/api/conversations/{created['id']}/tree")).json()
        assert [m["id"] for m in tree][-1] == alternate["id"]

    @pytest.mark.asyncio
    async def test_delete_message_cascades(self, api):
        created = await create_conversation(api)
        question = await append(api, created["id"], "user", "Q")
        await append(
            api, created["id"], "user", "Q again",
            threadId="t-1", parentMessageId=question["id"],
        )

        response = await api.delete(f"/api/messages/{question['id']}")
        assert response.json()["messagesDeleted"] == 2
        assert (await api.get(f"/api/messages/{question['id']}")).status_code == 404


class TestDataAndProviderEndpoints:
    """Export/import, provider catalog and settings."""

    @pytest.mark.asyncio
    async def test_export_clear_import(self, api):
        created = await create_conversation(api)
        await append(api, created["id"], "user", "keep me")

        payload = (await api.get("/api/data/export")).json()
        assert payload["version"] == 1

        assert (await api.delete("/api/data")).status_code == 200
        assert (await api.get("/api/conversations")).json() == []

        imported = await api.post("/api/data/import", json=payload)
        assert imported.json()["imported"]["messages"] == 1

        messages = (await api.get(f"/api/conversations/{created['id']}/messages")).json()
        assert messages[0]["content"] == "keep me"

        conflict = await api.post("/api/data/import", json=payload)
        assert conflict.status_code == 409

    @pytest.mark.asyncio
    async def test_provider_catalog(self, api):
        providers = (await api.get("/api/providers")).json()
        assert [p["id"] for p in providers] == ["openai", "anthropic", "google"]
        assert (await api.get("/api/providers/nope")).status_code == 404

    @pytest.mark.asyncio
    async def test_settings_never_return_key(self, api, monkeypatch):
        monkeypatch.setattr(settings, "CREDENTIAL_KDF_ITERATIONS", 1_000)

        response = await api.put(
            "/api/providers/openai/settings",
            json={"apiKey": "sk-secret", "model": "gpt-4o", "passphrase": "pw"},
        )
        body = response.json()
        assert body["isEncrypted"] is True
        assert body["hasApiKey"] is True
        assert "apiKey" not in body

        listed = (await api.get("/api/providers/settings")).json()
        assert [s["provider"] for s in listed] == ["openai"]

        assert (await api.delete("/api/providers/openai/settings")).status_code == 200
        assert (await api.delete("/api/providers/openai/settings")).status_code == 404
