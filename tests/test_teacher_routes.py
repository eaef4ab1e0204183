"""
Test: instructor HTTP routes and their token check.
"""
import pytest

from kodislovo.app import create_app


@pytest.fixture
def seeded(remote, payload_factory):
    remote.add_record("k1", payload_factory({"1": "ель", "2": "5"}, name="Сидоров Олег", student_class="7Б"),
                      fio="Сидоров Олег", student_class="7Б")
    remote.add_record("k2", payload_factory({"1": "ель", "2": "4", "3": "синий"}, name="Андреева Мария"),
                      fio="Андреева Мария")
    return remote


class TestAuth:
    def test_token_required(self, client):
        resp = client.post("/api/teacher/list", json={})
        assert resp.status_code == 401

    def test_wrong_token(self, client):
        resp = client.post("/api/teacher/list", json={}, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_header_token(self, client, seeded):
        resp = client.post("/api/teacher/list", json={}, headers={"X-Teacher-Token": "panel-secret"})
        assert resp.status_code == 200

    def test_student_routes_stay_public(self, client):
        assert client.get("/api/exam/manifest/russian").status_code == 200

    def test_unconfigured_panel_token(self, cfg, remote, loader, clock):
        cfg.teacher_panel_token = ""
        app = create_app(cfg, remote=remote, loader=loader, clock=clock)
        resp = app.test_client().post("/api/teacher/list", json={}, headers={"Authorization": "Bearer x"})
        assert resp.status_code == 503


class TestListing:
    def test_list_filter_get(self, client, seeded, teacher_headers):
        data = client.post("/api/teacher/list", json={"subject": "russian", "variant": "01"},
                           headers=teacher_headers).get_json()
        assert data["total"] == 2
        assert {item["key"] for item in data["items"]} == {"k1", "k2"}

        data = client.get("/api/teacher/filter?q=андреева", headers=teacher_headers).get_json()
        assert [item["key"] for item in data["items"]] == ["k2"]
        assert data["total"] == 2

        record = client.post("/api/teacher/get", json={"key": "k1"}, headers=teacher_headers).get_json()
        assert record["student"]["name"] == "Сидоров Олег"

    def test_get_missing_record(self, client, seeded, teacher_headers):
        resp = client.post("/api/teacher/get", json={"key": "nope"}, headers=teacher_headers)
        assert resp.status_code == 404

    def test_list_csv(self, client, seeded, teacher_headers):
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        resp = client.get("/api/teacher/export/list.csv", headers=teacher_headers)
        assert resp.mimetype == "text/csv"
        text = resp.data.decode("utf-8")
        assert text.startswith("\ufefffio;class;")
        assert "Андреева Мария" in text


class TestAutocheck:
    def test_key_upload_validation(self, client, teacher_headers):
        assert client.post("/api/teacher/key", json={"key": "abc"}, headers=teacher_headers).status_code == 400
        resp = client.post("/api/teacher/key", json={"key": {"title": "пусто"}}, headers=teacher_headers)
        assert resp.status_code == 422

    def test_autocheck_exports_and_print(self, client, seeded, teacher_headers):
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        assert client.get("/api/teacher/print", headers=teacher_headers).status_code == 400

        uploaded = client.post("/api/teacher/key", json={"key": {"title": "Ключ", "answers": {"1": "ель", "2": "4"}}},
                               headers=teacher_headers).get_json()
        assert uploaded == {"ok": True, "tasks": 2, "title": "Ключ"}

        data = client.post("/api/teacher/autocheck", json={"keys": ["k1", "k2"]},
                           headers=teacher_headers).get_json()
        assert [r["fio"] for r in data["reports"]] == ["Андреева Мария", "Сидоров Олег"]
        assert [r["percent"] for r in data["reports"]] == [100, 50]
        assert data["summary"]["averagePercent"] == 75

        csv_resp = client.get("/api/teacher/export/report.csv", headers=teacher_headers)
        assert "task_2" in csv_resp.data.decode("utf-8")

        html = client.get("/api/teacher/print", headers=teacher_headers).data.decode("utf-8")
        assert "Сидоров Олег" in html

    def test_autocheck_falls_back_to_variant_key(self, client, seeded, teacher_headers):
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        data = client.post("/api/teacher/autocheck", json={"key": "k2"}, headers=teacher_headers).get_json()
        assert data["reports"][0]["keyTitle"] == "Контрольная работа"
        assert data["reports"][0]["percent"] == 100

    def test_autocheck_uses_payload_snapshot(self, client, remote, payload_factory, teacher_headers):
        remote.add_record("k9", payload_factory({"1": "ель", "2": "4", "3": "синий"}, variant_id="variant_09"),
                          variant="variant_09")
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        resp = client.post("/api/teacher/autocheck", json={"key": "k9"}, headers=teacher_headers)
        assert resp.status_code == 200
        report = resp.get_json()["reports"][0]
        assert report["error"] is None
        assert report["percent"] == 100

    def test_autocheck_without_any_key(self, client, remote, teacher_headers):
        remote.add_record("k4", {"answers": {"1": "ель"}}, variant="variant_09")
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        resp = client.post("/api/teacher/autocheck", json={"key": "k4"}, headers=teacher_headers)
        assert resp.status_code == 422
        assert resp.get_json()["type"] == "KeyResolutionError"


class TestVoid:
    def test_void(self, client, seeded, teacher_headers):
        client.post("/api/teacher/list", json={}, headers=teacher_headers)
        data = client.post("/api/teacher/void", json={"keys": ["k1"]}, headers=teacher_headers).get_json()
        assert data["ok"] is True
        assert {i["key"]: i["voided"] for i in data["items"]} == {"k1": True, "k2": False}

    def test_void_nothing(self, client, teacher_headers):
        assert client.post("/api/teacher/void", json={"keys": []}, headers=teacher_headers).status_code == 400


class TestResetCodes:
    def test_issue_and_history(self, client, teacher_headers):
        resp = client.post("/api/teacher/reset", headers=teacher_headers, json={
            "subject": "russian", "variant": "variant_01", "class": "7А", "fio": "Иванов Иван",
        })
        entry = resp.get_json()
        assert entry["link"].startswith("https://school.example.test/control/control.html?")

        items = client.get("/api/teacher/reset/history", headers=teacher_headers).get_json()["items"]
        assert items[0]["code"] == entry["code"]

        client.delete("/api/teacher/reset/history", headers=teacher_headers)
        assert client.get("/api/teacher/reset/history", headers=teacher_headers).get_json()["items"] == []

    def test_issue_requires_identity(self, client, remote, teacher_headers):
        resp = client.post("/api/teacher/reset", headers=teacher_headers,
                           json={"subject": "russian", "variant": "variant_01", "class": "7А"})
        assert resp.status_code == 400
        assert remote.codes == {}


class TestTimerConfig:
    def test_set_then_get(self, client, remote, teacher_headers):
        resp = client.post("/api/teacher/config/set", headers=teacher_headers,
                           json={"subject": "russian", "variant": "variant_01", "timeLimitMinutes": 30})
        assert resp.status_code == 200
        assert remote.timer[("russian", "variant_01")] == 30
        data = client.post("/api/teacher/config/get", headers=teacher_headers,
                           json={"subject": "russian", "variant": "variant_01"}).get_json()
        assert data["timeLimitMinutes"] == 30

    @pytest.mark.parametrize("value", [-1, 2.5, "30", None, True])
    def test_set_rejects_bad_values(self, client, remote, teacher_headers, value):
        resp = client.post("/api/teacher/config/set", headers=teacher_headers,
                           json={"subject": "russian", "timeLimitMinutes": value})
        assert resp.status_code == 400
        assert remote.timer == {}
