from __future__ import annotations
import asyncio
import json
import logging
from typing import Callable, Literal, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

from repcoach.common.config import load_settings
from repcoach.runtime.assembly import WorkoutRuntime, build_local_runtime

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT_S = 5.0

Command = Literal["start", "pause", "resume", "reset", "rep"]

app = FastAPI(title="Rep Coach")


class BrowserSpeechInput:
    """
    Speech input collaborator fed by the browser's own recognizer over the
    WebSocket. start()/stop() tell clients to switch their recognizer on or off;
    results are only forwarded while started.
    """
    def __init__(self, notify: Callable[[dict], None]):
        self.notify = notify
        self.active = False
        self._on_phrase = None
        self._on_end = None
        self._on_error = None

    def start(self, on_phrase, on_end, on_error):
        self._on_phrase, self._on_end, self._on_error = on_phrase, on_end, on_error
        self.active = True
        self.notify({"type": "listen", "active": True})

    def stop(self):
        self.active = False
        self._on_phrase = self._on_end = self._on_error = None
        self.notify({"type": "listen", "active": False})

    def phrase(self, text: str):
        if self.active and self._on_phrase:
            self._on_phrase(text.strip().lower())

    def ended(self):
        if self.active and self._on_end:
            on_end = self._on_end
            self.active = False
            on_end()

    def failed(self, error: str):
        if self.active and self._on_error:
            on_error = self._on_error
            self.active = False
            on_error(error)


WS_CLIENTS: Set[WebSocket] = set()
LOOP: Optional[asyncio.AbstractEventLoop] = None
RUNTIME: Optional[WorkoutRuntime] = None


# runtime threads emit here; hop onto the server loop to reach WS clients
def _sink(ev: dict):
    loop = LOOP
    if loop is None or loop.is_closed() or not WS_CLIENTS:
        return
    asyncio.run_coroutine_threadsafe(broadcast(ev), loop)


def _history_event(records) -> dict:
    return {"type": "history", "records": [r.to_dict() for r in records]}


def set_runtime(runtime: Optional[WorkoutRuntime]):
    global RUNTIME
    if RUNTIME is not None and RUNTIME is not runtime:
        RUNTIME.shutdown()
    RUNTIME = runtime
    if runtime is None:
        return
    runtime.set_event_sink(_sink)
    if runtime.store is not None:
        runtime.store.subscribe(lambda records: _sink(_history_event(records)))
    runtime.run_in_background()


def ACTIVE_RUNTIME() -> WorkoutRuntime:
    if RUNTIME is None:
        settings = load_settings()
        set_runtime(build_local_runtime(settings, listener=BrowserSpeechInput(_sink)))
    return RUNTIME


def _browser_input() -> Optional[BrowserSpeechInput]:
    listener = ACTIVE_RUNTIME().adapter.listener
    return listener if isinstance(listener, BrowserSpeechInput) else None


@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)


@app.get("/workout")
def current():
    return JSONResponse(ACTIVE_RUNTIME().snapshot())


@app.post("/workout/{command}")
def run_command(command: Command):
    rt = ACTIVE_RUNTIME()
    applied = rt.command(command).result(timeout=COMMAND_TIMEOUT_S)
    return {"applied": bool(applied), "state": rt.snapshot()}


@app.get("/history")
def history():
    return _history_event(ACTIVE_RUNTIME().history())


@app.delete("/history/{record_id}")
def delete_history(record_id: str):
    if not ACTIVE_RUNTIME().delete_record(record_id):
        raise HTTPException(status_code=404, detail=f"no exercise record {record_id}")
    return {"deleted": record_id}


@app.websocket("/ws/events")
async def ws_events(ws: WebSocket):
    global LOOP
    await ws.accept()
    LOOP = asyncio.get_running_loop()
    WS_CLIENTS.add(ws)
    rt = ACTIVE_RUNTIME()
    await ws.send_text(json.dumps({"type": "state", **rt.snapshot()}))
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_text(json.dumps({"type": "trace", "msg": "ws: bad json"}))
                continue
            if not isinstance(data, dict):
                await ws.send_text(json.dumps({"type": "trace", "msg": "ws: expected a json object"}))
                continue
            _handle_client_message(rt, data)
    except WebSocketDisconnect:
        pass
    finally:
        WS_CLIENTS.discard(ws)


def _handle_client_message(rt: WorkoutRuntime, data: dict):
    kind = data.get("type")
    browser = _browser_input()
    if kind == "phrase" and browser is not None:
        browser.phrase(str(data.get("text", "")))
    elif kind == "listen_end" and browser is not None:
        browser.ended()
    elif kind == "listen_error" and browser is not None:
        browser.failed(str(data.get("error", "unknown")))
    elif kind == "command":
        try:
            rt.command(str(data.get("name", "")))
        except KeyError:
            rt.emit({"type": "trace", "msg": f"ws: unknown command {data.get('name')!r}"})


async def broadcast(obj: dict):
    dead = []
    text = json.dumps(obj)
    for ws in list(WS_CLIENTS):
        try:
            await ws.send_text(text)
        except Exception:
            dead.append(ws)
    for d in dead:
        WS_CLIENTS.discard(d)


def main():
    import uvicorn

    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
