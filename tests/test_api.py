import io
import os

import pytest
from fakes import FakeEngine, FakeRun, image_missing
from fastapi.testclient import TestClient

from scrape_runner.api import create_app
from scrape_runner.errors import EngineError, InfrastructureError
from scrape_runner.settings import RUNTIME_IMAGE


def _client(settings, engine, sink=None) -> TestClient:
    return TestClient(create_app(settings, engine=engine, error_sink=sink or io.StringIO()))


def test_health(settings):
    client = _client(settings, FakeEngine())
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_run_job_success(settings):
    sink = io.StringIO()
    engine = FakeEngine(run=FakeRun(stdout=[b"done"], stderr=[b"npm warn\n"]))
    client = _client(settings, engine, sink)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == 200
    assert resp.json() == "done"
    assert "npm warn" not in resp.text
    assert sink.getvalue() == "npm warn\n"


def test_run_job_returns_script_json_as_string(settings):
    engine = FakeEngine(run=FakeRun(stdout=[b'{"items": [1, 2]}\n']))
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == 200
    assert resp.json() == '{"items": [1, 2]}\n'


def test_missing_program_directory(settings):
    engine = FakeEngine()
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"other": "value"})

    assert resp.status_code == 400
    assert resp.json() == {
        "status": "error",
        "message": "Error: programDirectory is required",
    }
    assert engine.created == []


@pytest.mark.parametrize("path", ["..", "../../etc", "missing"])
def test_invalid_program_directory(settings, path):
    engine = FakeEngine()
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": path})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Error: Invalid program directory"
    assert engine.created == []


def test_body_not_json(settings):
    engine = FakeEngine()
    client = _client(settings, engine)

    resp = client.post(
        "/start-scrapper-job",
        content=b"not json",
        headers={"content-type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["status"] == "error"
    assert engine.created == []


def test_non_zero_exit(settings):
    engine = FakeEngine(run=FakeRun(stdout=[b"oops"], exit_code=1))
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["status"] == "error"
    assert body["message"].startswith("Job script execution failed:")
    assert "1" in body["message"]
    assert "exit code 1" in body["message"]


def test_create_failure(settings):
    engine = FakeEngine(create_errors=[EngineError("bind source path does not exist", 400)])
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == 500
    assert "bind source path does not exist" in resp.json()["message"]


def test_missing_image_retry_is_invisible(settings):
    first_try = _client(settings, FakeEngine(run=FakeRun(stdout=[b"done"])))
    engine = FakeEngine(
        run=FakeRun(stdout=[b"done"]),
        create_errors=[image_missing(RUNTIME_IMAGE)],
    )
    with_pull = _client(settings, engine)

    expected = first_try.post("/start-scrapper-job", json={"programDirectory": "job"})
    resp = with_pull.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == expected.status_code == 200
    assert resp.json() == expected.json() == "done"
    assert engine.pulled == [RUNTIME_IMAGE]


def test_startup_pings_engine_and_closes_on_shutdown(settings):
    engine = FakeEngine()
    with TestClient(create_app(settings, engine=engine)) as client:
        assert client.get("/health").status_code == 200
        assert engine.closed is False
    assert engine.closed is True


def test_startup_fails_when_engine_unreachable(settings):
    engine = FakeEngine(ping_error=EngineError("connection refused"))
    app = create_app(settings, engine=engine)

    with pytest.raises(InfrastructureError, match="connection refused"):
        with TestClient(app):
            pass


def test_mounts_the_directory_that_was_validated(settings, scripts_dir):
    (scripts_dir / "a" / "b").mkdir(parents=True)
    (scripts_dir / "secret").mkdir()
    (scripts_dir.parent / "secret").mkdir()
    os.symlink(scripts_dir / "a" / "b", scripts_dir / "link")
    engine = FakeEngine(run=FakeRun(stdout=[b"done"]))
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "link/../../secret"})

    assert resp.status_code == 200
    mounted = next(iter(engine.created[0]["volumes"]))
    real_base = str(scripts_dir.resolve())
    assert mounted == str((scripts_dir / "secret").resolve())
    assert mounted.startswith(real_base + os.sep)


def test_directory_gone_after_validation(settings, monkeypatch):
    def vanished(*args, **kwargs):
        raise FileNotFoundError("job")

    monkeypatch.setattr("scrape_runner.api.build_job_config", vanished)
    engine = FakeEngine()
    client = _client(settings, engine)

    resp = client.post("/start-scrapper-job", json={"programDirectory": "job"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Error: Invalid program directory"
    assert engine.created == []
