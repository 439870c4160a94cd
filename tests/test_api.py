"""
HTTP API Tests
"""
import json

import pytest

import factories


def create(client, body):
    response = client.post("/api/universities", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def first_test_type(body):
    return body["departments"][0]["majors"][0]["admission_schedules"][0]["test_types"][0]


# =============================================================================
# シナリオ
# =============================================================================

class TestScenarios:

    def test_create_minimal_university(self, client):
        body = create(client, {"name": "東京大学", "departments": []})
        assert body["id"] >= 1
        assert body["version"] == 1
        assert body["created_at"] is not None
        assert body["departments"] == []

    def test_nested_tree_gets_percentages(self, client):
        payload = factories.university_payload(scores=(100, 100))
        for subject in first_test_type(payload)["subjects"]:
            subject["percentage"] = 7.0
        body = create(client, payload)
        assert [s["percentage"] for s in first_test_type(body)["subjects"]] == [50.0, 50.0]

    def test_duplicate_department_name(self, client):
        response = client.post("/api/universities", json={
            "name": "大学", "departments": [{"name": "理学部"}, {"name": "理学部"}],
        })
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert {"field_path": "departments[1].name", "code": "DUPLICATE_NAME"}.items() <= body["details"]["errors"][0].items()

    def test_html_stripping(self, client):
        body = create(client, {"name": "<script>alert(1)</script>東京大学"})
        assert body["name"] == "東京大学"
        assert client.get(f"/api/universities/{body['id']}").json()["name"] == "東京大学"

    def test_optimistic_concurrency_conflict(self, client):
        body = create(client, {"name": "大阪大学"})
        url = f"/api/universities/{body['id']}"
        first = client.put(url, json={"name": "大阪大学", "version": 1})
        second = client.put(url, json={"name": "阪大", "version": 1})
        assert first.status_code == 200
        assert first.json()["version"] == 2
        assert second.status_code == 409
        assert second.json()["code"] == "CONFLICT"

    def test_aggregate_put_renames_into_removed_name(self, client):
        body = create(client, {"name": "千葉大学", "departments": [{"name": "理学部"}, {"name": "工学部"}]})
        engineering = {d["name"]: d["id"] for d in body["departments"]}["工学部"]
        response = client.put(f"/api/universities/{body['id']}", json={
            "name": "千葉大学", "departments": [{"id": engineering, "name": "理学部"}],
        })
        assert response.status_code == 200, response.text
        assert [(d["id"], d["name"]) for d in response.json()["departments"]] == [(engineering, "理学部")]

    def test_stale_nested_version_conflict(self, client):
        body = create(client, {"name": "金沢大学", "departments": [{"name": "理学部"}]})
        department = body["departments"][0]
        url = f"/api/universities/{body['id']}"
        renamed = client.put(f"{url}/departments/{department['id']}", json={"name": "理工学部", "version": 1})
        assert renamed.status_code == 200
        current = client.get(url).json()
        assert current["version"] == 2

        response = client.put(url, json={
            "name": "金沢大学",
            "version": current["version"],
            "departments": [{"id": department["id"], "name": "旧理学部", "version": 1}],
        })
        assert response.status_code == 409
        assert response.json()["details"]["resource"] == "Department"

    def test_batch_subject_update(self, client):
        body = create(client, factories.university_payload(scores=(60, 40)))
        department = body["departments"][0]
        test_type = first_test_type(body)
        subjects = [
            {"id": s["id"], "name": s["name"], "score": score, "display_order": s["display_order"]}
            for s, score in zip(test_type["subjects"], (70, 30))
        ]
        url = f"/api/universities/{body['id']}/departments/{department['id']}/subjects/batch"
        response = client.put(url, json={"test_type_id": test_type["id"], "subjects": subjects})
        assert response.status_code == 200, response.text

        reloaded = first_test_type(client.get(f"/api/universities/{body['id']}").json())
        assert [s["percentage"] for s in reloaded["subjects"]] == [70.0, 30.0]
        assert sum(s["percentage"] for s in reloaded["subjects"]) == 100.0


# =============================================================================
# リソースごとのエンドポイント
# =============================================================================

class TestResources:

    def test_list_with_pagination(self, client):
        for name in ("c", "a", "b"):
            create(client, {"name": name})
        body = client.get("/api/universities", params={"page": 2, "page_size": 2}).json()
        assert body["total"] == 3
        assert [u["name"] for u in body["items"]] == ["c"]
        assert [u["name"] for u in client.get("/api/universities").json()["items"]] == ["a", "b", "c"]

    def test_search(self, client):
        create(client, {"name": "Hokkaido University"})
        create(client, {"name": "東北大学"})
        response = client.get("/api/universities/search", params={"q": "hokkaido"})
        assert [u["name"] for u in response.json()] == ["Hokkaido University"]

    def test_delete_returns_204(self, client):
        body = create(client, {"name": "x"})
        response = client.delete(f"/api/universities/{body['id']}")
        assert response.status_code == 204
        assert client.get(f"/api/universities/{body['id']}").status_code == 404

    def test_soft_delete(self, client):
        body = create(client, {"name": "x"})
        assert client.delete(f"/api/universities/{body['id']}", params={"soft": "true"}).status_code == 204
        assert client.get(f"/api/universities/{body['id']}").status_code == 404

    def test_department_major_schedule_routes(self, client):
        university = create(client, {"name": "u"})
        base = f"/api/universities/{university['id']}/departments"
        department = client.post(base, json={"name": "理学部"})
        assert department.status_code == 201
        department_id = department.json()["id"]

        majors = f"{base}/{department_id}/majors"
        major = client.post(majors, json={"name": "数学科"}).json()
        schedules = f"{majors}/{major['id']}/admission-schedules"
        schedule = client.post(schedules, json={"name": "前期"})
        assert schedule.status_code == 201
        schedule_id = schedule.json()["id"]

        assert client.get(f"{schedules}/{schedule_id}").json()["name"] == "前期"
        renamed = client.put(f"{majors}/{major['id']}", json={"name": "数理科学科"})
        assert renamed.json()["name"] == "数理科学科"
        assert client.get(f"{base}/{department_id}").json()["majors"][0]["name"] == "数理科学科"
        assert client.delete(f"{base}/{department_id}").status_code == 204
        assert client.get(f"{base}/{department_id}").status_code == 404

    def test_admission_routes(self, client):
        body = create(client, factories.university_payload())
        schedule_id = body["departments"][0]["majors"][0]["admission_schedules"][0]["id"]
        base = f"/api/admission-schedules/{schedule_id}"

        info = client.post(f"{base}/info", json={"enrollment": 30, "academic_year": 2026})
        assert info.status_code == 201
        info_id = info.json()["id"]
        updated = client.put(f"{base}/info/{info_id}", json={"enrollment": 40, "academic_year": 2026, "status": "active"})
        assert updated.json()["status"] == "active"
        assert client.get(f"{base}/info/{info_id}").json()["enrollment"] == 40

        test_type = client.post(f"{base}/test-types", json={"name": "二次", "subjects": [{"name": "数学", "score": 1}]})
        assert test_type.status_code == 201
        assert test_type.json()["subjects"][0]["percentage"] == 100.0
        assert client.delete(f"{base}/test-types/{test_type.json()['id']}").status_code == 204

    def test_subject_routes(self, client):
        body = create(client, factories.university_payload(scores=(50, 50)))
        department_id = body["departments"][0]["id"]
        test_type = first_test_type(body)
        base = f"/api/universities/{body['id']}/departments/{department_id}/subjects"

        created = client.post(base, json={"test_type_id": test_type["id"], "name": "国語", "score": 100})
        assert created.status_code == 201
        assert created.json()["percentage"] == 50.0
        subject_id = created.json()["id"]
        assert client.get(f"{base}/{subject_id}").json()["name"] == "国語"
        assert client.delete(f"{base}/{subject_id}").status_code == 204
        assert client.get(f"{base}/{subject_id}").status_code == 404

    def test_filter_options(self, client):
        region = client.post("/api/filter-options", json={"category": "REGION", "name": "関東"})
        assert region.status_code == 201
        prefecture = client.post("/api/filter-options", json={
            "category": "PREFECTURE", "name": "東京都", "parent_id": region.json()["id"],
        })
        assert prefecture.status_code == 201
        body = client.get("/api/filter-options", params={"category": "PREFECTURE"}).json()
        assert body["total"] == 1
        assert body["items"][0]["parent_id"] == region.json()["id"]

    def test_cache_admin(self, client):
        body = create(client, {"name": "x"})
        client.get(f"/api/universities/{body['id']}")
        stats = client.get("/api/admin/cache-stats").json()
        assert f"universities:{body['id']}" in stats["keys"]
        flushed = client.post("/api/admin/cache/flush")
        assert flushed.status_code == 200
        assert client.get("/api/admin/cache-stats").json()["entries"] == 0

    def test_root_and_health(self, client):
        assert client.get("/").json()["status"] == "running"
        assert client.get("/api/health").json()["status"] == "ok"


# =============================================================================
# エラー応答
# =============================================================================

class TestErrors:

    def test_not_found(self, client):
        response = client.get("/api/universities/999")
        assert response.status_code == 404
        assert response.json() == {
            "code": "NOT_FOUND",
            "message": "Universityが見つかりません",
            "details": {"resource": "University", "id": 999},
        }

    def test_duplicate_name(self, client):
        create(client, {"name": "x"})
        response = client.post("/api/universities", json={"name": "x"})
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_NAME"

    def test_malformed_json(self, client):
        response = client.post("/api/universities", content=b"{", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    def test_missing_field(self, client):
        response = client.post("/api/universities", json={"departments": []})
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "name"

    def test_bad_path_id(self, client):
        response = client.get("/api/universities/abc")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"


class TestGuard:

    def test_body_too_large(self, client):
        body = json.dumps({"name": "x" * (1024 * 1024)})
        response = client.post("/api/universities", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"

    def test_chunked_body_too_large(self, client):
        def chunks():
            yield b'{"name": "'
            for _ in range(2 * 1024):
                yield b"x" * 1024
            yield b'"}'

        response = client.post("/api/universities", content=chunks(), headers={"Content-Type": "application/json"})
        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"
        assert client.get("/api/universities").json()["total"] == 0

    def test_chunked_body_within_limit(self, client):
        def chunks():
            yield b'{"name": '
            yield '"長崎大学"}'.encode("utf-8")

        response = client.post("/api/universities", content=chunks(), headers={"Content-Type": "application/json"})
        assert response.status_code == 201, response.text
        assert response.json()["name"] == "長崎大学"

    def test_chunked_non_json_content_type(self, client):
        response = client.post("/api/universities", content=iter([b"name=x"]), headers={"Content-Type": "text/plain"})
        assert response.status_code == 415

    def test_non_json_content_type(self, client):
        response = client.post("/api/universities", content="name=x", headers={"Content-Type": "text/plain"})
        assert response.status_code == 415

    @pytest.mark.parametrize("token", ["", "forged"])
    def test_csrf_token_required(self, client, token):
        response = client.post("/api/universities", json={"name": "x"}, headers={"X-CSRF-Token": token})
        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_ERROR"

    def test_reads_need_no_token(self, client):
        response = client.get("/api/universities", headers={"X-CSRF-Token": ""})
        assert response.status_code == 200

    def test_security_headers(self, client):
        response = client.get("/api/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"

    def test_csrf_endpoint(self, client):
        token = client.get("/csrf").json()["token"]
        assert len(token) >= 32
