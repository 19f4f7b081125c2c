from uuid import uuid4

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from concierge.api.recommendations import get_generation_agent
from concierge.core.database import get_db
from concierge.main import app
from concierge.services.generation_agent import AgentError
from factories import create_profile, create_smartphone_catalog

USER_ID = "auth-user-1"


class BrokenAgent:
    async def generate(self, prompt: str) -> str:
        raise AgentError("upstream unavailable")


def _auth(user_id: str = USER_ID) -> dict:
    token = jwt.encode({"sub": user_id}, "test-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_agent] = lambda: BrokenAgent()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def catalog(db):
    return await create_smartphone_catalog(db)


async def _start(client, catalog) -> str:
    response = await client.post("/api/sessions", json={"category_id": str(catalog.category.id)}, headers=_auth())
    assert response.status_code == 200
    return response.json()["session"]["id"]


async def _answer_required(client, catalog, session_id):
    response = await client.put("/api/answers", headers=_auth(), json={
        "session_id": session_id,
        "answers": [
            {"question_id": str(catalog.usage.id), "question_option_id": str(catalog.usage.options[1].id)},
            {"question_id": str(catalog.brand.id), "question_option_id": str(catalog.brand.options[0].id)},
        ],
    })
    assert response.status_code == 200
    return response


async def test_health(client):
    response = await client.get("/health")

    assert response.json()["status"] == "healthy"


async def test_catalog_is_public(client, catalog):
    categories = await client.get("/api/categories")
    questions = await client.get(f"/api/questions/{catalog.category.id}")

    assert [c["name"] for c in categories.json()["categories"]] == ["Smartphones"]
    body = questions.json()
    assert body["total"] == 3
    assert [o["label"] for o in body["questions"][0]["options"]] == ["写真", "ゲーム"]


async def test_session_endpoints_require_token(client, catalog):
    response = await client.post("/api/sessions", json={"category_id": str(catalog.category.id)})

    assert response.status_code == 401
    assert response.json()["detail"] == "認証が必要です"

    bad = await client.get("/api/sessions/" + str(uuid4()), headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


async def test_full_questionnaire_flow(client, catalog):
    session_id = await _start(client, catalog)
    again = await client.post("/api/sessions", json={"category_id": str(catalog.category.id)}, headers=_auth())
    assert again.json()["is_existing"] is True
    assert again.json()["session"]["id"] == session_id

    early = await client.put(f"/api/sessions/{session_id}/complete", headers=_auth())
    assert early.status_code == 400
    assert early.json()["code"] == "INCOMPLETE_REQUIRED_ANSWERS"
    assert len(early.json()["missing_questions"]) == 2

    await _answer_required(client, catalog, session_id)
    progress = await client.get(f"/api/sessions/{session_id}/complete", headers=_auth())
    assert progress.json()["can_complete"] is True

    done = await client.put(f"/api/sessions/{session_id}/complete", headers=_auth())
    assert done.status_code == 200
    assert done.json()["session"]["status"] == "COMPLETED"
    assert done.json()["already_completed"] is False

    generated = await client.post(
        "/api/recommendations/generate", json={"session_id": session_id}, headers=_auth()
    )
    assert generated.status_code == 200
    body = generated.json()
    assert body["source"] == "fallback"
    assert [r["product"]["name"] for r in body["recommendations"]] == ["Phone B", "Phone D", "Phone A"]
    assert [r["score"] for r in body["recommendations"]] == [0.9, 0.8, 0.7]

    stored = await client.get(f"/api/recommendations/{session_id}", headers=_auth())
    assert [r["rank"] for r in stored.json()["recommendations"]] == [1, 2, 3]

    again = await client.post(
        "/api/recommendations/generate", json={"session_id": session_id}, headers=_auth()
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_GENERATED"

    history = await client.get("/api/history", headers=_auth())
    assert sorted(h["type"] for h in history.json()["histories"]) == ["QUESTIONNAIRE", "RECOMMENDATION"]
    filtered = await client.get("/api/history?type=QUESTIONNAIRE", headers=_auth())
    assert filtered.json()["total"] == 1


async def test_answers_are_validated(client, catalog):
    session_id = await _start(client, catalog)

    response = await client.post("/api/answers", headers=_auth(), json={
        "session_id": session_id,
        "question_id": str(catalog.usage.id),
        "question_option_id": str(uuid4()),
    })

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.json()["reason"] == "無効な選択肢です"
    assert response.json()["question_id"] == str(catalog.usage.id)
    listed = await client.get(f"/api/answers?session_id={session_id}", headers=_auth())
    assert listed.json()["total"] == 0


async def test_invalid_state_is_localized(client, catalog):
    session_id = await _start(client, catalog)
    await client.post(f"/api/sessions/{session_id}/abandon", headers=_auth())

    ja = await client.post(f"/api/sessions/{session_id}/pause", headers=_auth())
    en = await client.post(
        f"/api/sessions/{session_id}/pause", headers={**_auth(), "Accept-Language": "en-US,en;q=0.9"}
    )

    assert ja.status_code == en.status_code == 409
    assert ja.json()["detail"] == "中断中のセッションは一時停止できません"
    assert en.json()["detail"] == "Cannot pause a session that is abandoned"
    assert en.json()["current_status"] == "ABANDONED"


async def test_generate_before_completion(client, catalog):
    session_id = await _start(client, catalog)

    response = await client.post(
        "/api/recommendations/generate", json={"session_id": session_id}, headers=_auth()
    )

    assert response.status_code == 409
    assert response.json()["code"] == "SESSION_NOT_COMPLETED"


async def test_other_users_session_is_not_found(client, catalog):
    session_id = await _start(client, catalog)
    await client.post("/api/sessions", json={"category_id": str(catalog.category.id)}, headers=_auth("intruder"))

    response = await client.get(f"/api/sessions/{session_id}", headers=_auth("intruder"))

    assert response.status_code == 404
    assert response.json()["detail"] == "セッションが見つかりません"


async def test_request_validation_error_shape(client):
    response = await client.post("/api/sessions", json={"category_id": "not-a-uuid"}, headers=_auth())

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"][0]["loc"] == ["body", "category_id"]


async def test_delete_is_rate_limited(client, db):
    await create_profile(db, user_id=USER_ID)

    statuses = [
        (await client.delete(f"/api/sessions/{uuid4()}", headers=_auth())).status_code
        for _ in range(11)
    ]

    assert statuses[:10] == [404] * 10
    assert statuses[10] == 429


async def test_answer_violation_follows_accept_language(client, catalog):
    session_id = await _start(client, catalog)

    response = await client.post(
        "/api/answers",
        headers={**_auth(), "Accept-Language": "en"},
        json={"session_id": session_id, "question_id": str(catalog.notes.id), "text_value": "x" * 1001},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "The submitted data is invalid"
    assert response.json()["reason"] == "Please keep your answer within 1000 characters"
