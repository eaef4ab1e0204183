"""
Test: issuing and redeeming one-time reset codes, and the local journal.
"""
import pytest

from kodislovo.errors import RemoteError, ValidationError
from kodislovo.services.reset_workflow import ResetHistory, control_link, redeem_reset, request_reset
from kodislovo.services.session import SessionController, Status


@pytest.fixture
def history(tmp_path):
    return ResetHistory(str(tmp_path / "reset_history.json"))


@pytest.fixture
def finished_controller(store, variant, clock):
    ctrl = SessionController(store, variant, "russian", clock=clock, tick_interval=3600)
    ctrl.open()
    ctrl.answer(1, "ель")
    ctrl.set_student("Иванов Иван", "7А")
    ctrl.finish()
    yield ctrl
    ctrl.close()


class TestControlLink:
    def test_link(self):
        link = control_link("https://school.example.test/", "russian", "variant_01", "RST001")
        assert link == ("https://school.example.test/control/control.html"
                        "?subject=russian&variant=variant_01&reset=RST001")


class TestRequestReset:
    def test_all_fields_required(self, remote):
        with pytest.raises(ValidationError):
            request_reset(remote, "russian", "variant_01", "7А", "  ")
        assert remote.codes == {}

    def test_issue_records_history(self, remote, history):
        entry = request_reset(remote, "russian", "variant_01", "7А", "Иванов Иван",
                              history=history, site_url="https://school.example.test")
        assert entry["code"] == "RST001"
        assert entry["fio"] == "Иванов Иван"
        assert entry["link"].endswith("reset=RST001")
        assert history.entries()[0]["code"] == "RST001"

    def test_missing_code_is_remote_error(self, history):
        class Silent:
            def reset_issue(self, *args):
                return {"ok": True}

        with pytest.raises(RemoteError):
            request_reset(Silent(), "russian", "variant_01", "7А", "Иванов Иван", history=history)
        assert history.entries() == []


class TestResetHistory:
    def test_newest_first_and_capped(self, tmp_path):
        history = ResetHistory(str(tmp_path / "h.json"), limit=3)
        for i in range(5):
            history.add({"code": f"C{i}"})
        assert [e["code"] for e in history.entries()] == ["C4", "C3", "C2"]

    def test_clear(self, history):
        history.add({"code": "C1"})
        history.clear()
        assert history.entries() == []


class TestRedeemReset:
    def test_redeem_resets_attempt_and_keeps_identity(self, remote, finished_controller):
        code = request_reset(remote, "russian", "variant_01", "7А", "Иванов Иван")["code"]
        fresh = redeem_reset(remote, finished_controller, code)
        assert fresh.status == Status.IN_PROGRESS
        assert fresh.answers == {}
        assert finished_controller.attempt.student_name == "Иванов Иван"
        assert finished_controller.attempt.student_class == "7А"

    def test_code_is_single_use(self, remote, finished_controller):
        code = request_reset(remote, "russian", "variant_01", "7А", "Иванов Иван")["code"]
        redeem_reset(remote, finished_controller, code)
        finished_controller.finish()
        with pytest.raises(RemoteError):
            redeem_reset(remote, finished_controller, code)
        assert finished_controller.attempt.status == Status.FINISHED

    def test_code_for_another_student_rejected(self, remote, finished_controller):
        code = request_reset(remote, "russian", "variant_01", "7А", "Петров Пётр")["code"]
        with pytest.raises(RemoteError):
            redeem_reset(remote, finished_controller, code)
        assert finished_controller.attempt.answers == {"1": "ель"}

    def test_empty_code(self, remote, finished_controller):
        with pytest.raises(ValidationError):
            redeem_reset(remote, finished_controller, " ")

    def test_identity_required(self, remote, store, variant, clock):
        ctrl = SessionController(store, variant, "russian", clock=clock, tick_interval=3600)
        ctrl.open()
        ctrl.finish()
        with pytest.raises(ValidationError):
            redeem_reset(remote, ctrl, "RST001")

    def test_rejection_in_body(self, finished_controller):
        class Rejecting:
            def reset_consume(self, *args):
                return {"ok": False, "message": "expired"}

        with pytest.raises(RemoteError) as exc:
            redeem_reset(Rejecting(), finished_controller, "RST009")
        assert "expired" in str(exc.value)
        assert finished_controller.attempt.is_finished
