"""
HTTP level tests: bearer tokens, error rendering and a publish round trip.
"""
import pytest
from fastapi.testclient import TestClient

from api import create_access_token, decode_access_token
from database import Role
from main import app


@pytest.fixture
def client(db):
    return TestClient(app)


def auth_header(profile):
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


class TestTokens:
    """Tests for bearer token handling."""

    def test_round_trip(self):
        assert decode_access_token(create_access_token("user-1")) == "user-1"

    def test_expired_token_rejected(self):
        assert decode_access_token(create_access_token("user-1", expires_minutes=-1)) is None

    def test_garbage_token_rejected(self):
        assert decode_access_token("not-a-token") is None


class TestErrors:
    """Tests for the error envelope."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_token_is_401(self, client):
        response = client.get("/me")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_invalid_token_is_401(self, client):
        response = client.get("/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_unknown_user_is_403(self, client):
        response = client.get("/me", headers={"Authorization": f"Bearer {create_access_token('ghost')}"})
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_schema_violation_names_fields(self, client, school):
        response = client.post("/master/institutions", json={"code": "X"}, headers=auth_header(school["master"]))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_input"
        assert body["fields"] == ["name"]

    def test_wrong_role_is_403(self, client, school):
        response = client.post("/master/institutions", json={"name": "X"}, headers=auth_header(school["admin"]))
        assert response.status_code == 403

    def test_duplicate_is_409(self, client, school):
        response = client.post(
            "/master/institutions", json={"name": "Otra", "code": "E1"}, headers=auth_header(school["master"])
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_missing_resource_is_404(self, client, school):
        response = client.delete("/master/institutions/missing", headers=auth_header(school["master"]))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestEndpoints:
    """Tests for representative endpoints."""

    def test_me(self, client, school):
        response = client.get("/me", headers=auth_header(school["maestro"]))
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "maestro"
        assert body["home_path"] == "/maestro"
        assert body["institution_id"] == school["institution"].id

    def test_patch_distinguishes_null_from_omitted(self, client, school):
        headers = auth_header(school["master"])
        path = f"/master/institutions/{school['institution'].id}"
        renamed = client.patch(path, json={"name": "Escuela Renombrada"}, headers=headers).json()
        assert renamed["code"] == "E1"
        cleared = client.patch(path, json={"code": None}, headers=headers).json()
        assert cleared["code"] is None
        assert cleared["name"] == "Escuela Renombrada"

    def test_admin_teachers_of_other_institution(self, client, school, factory):
        other = factory.institution(name="Escuela Dos")
        response = client.get(
            "/admin/teachers", params={"institution_id": other.id}, headers=auth_header(school["admin"])
        )
        assert response.status_code == 403

    def test_maestro_without_classrooms(self, client, school):
        response = client.get("/maestro/classrooms", headers=auth_header(school["other_maestro"]))
        assert response.json() == {"classrooms": []}

    def test_publish_open_and_close(self, client, school, factory):
        template = factory.template(school["maestro"], questions=2)
        headers = auth_header(school["maestro"])

        published = client.post(
            "/maestro/publish",
            json={
                "classroom_id": school["classroom"].id,
                "text_id": template["id"],
                "quiz_id": template["quiz_id"],
                "expires_in_minutes": 30,
            },
            headers=headers,
        )
        assert published.status_code == 201
        session = published.json()
        assert len(session["codes"]) == 2

        opened = client.post("/student/open-attempt", json={"code": session["codes"][0]["code"]})
        assert opened.status_code == 200
        assert opened.json()["result"]["status"] == "in_progress"

        close_path = f"/maestro/evaluation-sessions/{session['session_id']}/close"
        assert client.post(close_path, headers=headers).status_code == 200
        assert client.post(close_path, headers=headers).status_code == 409

    def test_submit_and_results(self, client, school, factory):
        template = factory.template(school["maestro"], questions=3)
        headers = auth_header(school["maestro"])
        session = client.post(
            "/maestro/publish",
            json={
                "classroom_id": school["classroom"].id,
                "text_id": template["id"],
                "quiz_id": template["quiz_id"],
            },
            headers=headers,
        ).json()
        opened = client.post("/student/open-attempt", json={"code": session["codes"][0]["code"]}).json()["result"]
        answers = [
            {"question_id": question["id"], "option_id": question["options"][index]["id"]}
            for index, question in enumerate(opened["questions"])
        ]
        payload = {"attempt_id": opened["attempt_id"], "reading_time_ms": 20000, "answers": answers}

        too_few = client.post("/student/submit", json={**payload, "answers": answers[:2]})
        assert too_few.status_code == 400
        assert too_few.json()["fields"] == ["answers"]

        submitted = client.post("/student/submit", json=payload)
        assert submitted.status_code == 200
        assert submitted.json()["result"]["score_percent"] == 100.0
        again = client.post("/student/submit", json=payload)
        assert again.status_code == 409
        assert again.json()["error"] == "conflict"

        results = client.get("/maestro/resultados", headers=headers).json()
        assert results["total_attempts"] == 1
        assert results["avg_reading_time_sec"] == 20
        empty = client.get("/tutor/resultados", headers=auth_header(school["tutor"])).json()
        assert empty["total_attempts"] == 0

    def test_tutor_cannot_publish(self, client, school):
        response = client.post(
            "/maestro/publish",
            json={"classroom_id": "c", "text_id": "t", "quiz_id": "q"},
            headers=auth_header(school["tutor"]),
        )
        assert response.status_code == 403

    def test_tutor_profile_update(self, client, school):
        response = client.patch(
            "/tutor/profile", json={"child_name": "Diego", "child_grade": 2}, headers=auth_header(school["tutor"])
        )
        assert response.status_code == 200
        assert response.json()["child_grade"] == 2

    def test_master_dashboard(self, client, school):
        response = client.get("/master/dashboard", headers=auth_header(school["master"]))
        assert response.json()["profiles_by_role"][Role.MAESTRO.value] == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
