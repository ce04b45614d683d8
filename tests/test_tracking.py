import logging

from flask import Flask

from app.services.tracking import track


def test_track_runs_after_response_is_closed():
    app = Flask(__name__)
    seen = []

    class _Capture(logging.Handler):
        def emit(self, record):
            seen.append((record.getMessage(), getattr(record, "listing_id", None)))
    app.logger.addHandler(_Capture())
    app.logger.setLevel(logging.INFO)

    @app.get("/x")
    def view():
        track("boost_status_viewed", listing_id=7)
        assert seen == []
        return "ok"

    with app.test_client() as c:
        resp = c.get("/x")
        assert resp.status_code == 200
        resp.close()
    assert ("track.boost_status_viewed", 7) in seen


def test_track_failures_are_logged_not_raised(monkeypatch):
    app = Flask(__name__)
    errors = []

    def _sink_down(*args, **kwargs):
        raise RuntimeError("sink down")
    monkeypatch.setattr(app.logger, "info", _sink_down)
    monkeypatch.setattr(app.logger, "exception", lambda msg, *a, **kw: errors.append(msg))

    @app.get("/y")
    def view():
        track("checkout_opened", session_id="cs_1")
        return "ok"

    with app.test_client() as c:
        resp = c.get("/y")
        resp.close()
        assert resp.status_code == 200
    assert "track.failed" in errors
