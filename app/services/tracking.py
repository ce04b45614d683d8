from flask import after_this_request, current_app, has_request_context


def track(event: str, **fields) -> None:
    """
    Emit a tracking log line once the response has gone out.
    Runs after the client has its answer, so failures are logged and dropped.
    """
    app = current_app._get_current_object()

    def _emit():
        try:
            app.logger.info(f"track.{event}", extra=fields)
        except Exception:
            app.logger.exception("track.failed", extra={"track_event": event})

    if not has_request_context():
        _emit()
        return

    @after_this_request
    def _schedule(response):
        response.call_on_close(_emit)
        return response
