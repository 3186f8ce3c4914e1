from fastapi import HTTPException, Request

from relaybot.core.app_state import AppState


def get_app_state(request: Request) -> AppState:
    state = getattr(request.app.state, "relay", None)
    if state is None:
        raise HTTPException(status_code=503, detail="Relay is not running")
    return state
