import time
from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from typing import Optional, Union
from .config import settings
from .engine import TrackingEngine
from .models import Item, Playlist, SequencerState
from .stats import completion_history, playlist_stats

app = FastAPI(title="Playlist Progress Tracker")
engine: Optional[TrackingEngine] = None

class StateChange(BaseModel):
    state: Union[int, str]

class PlayerError(BaseModel):
    code: int

class ProgressUpdate(BaseModel):
    progress: float

class OpenRequest(BaseModel):
    index: Optional[int] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def get_engine() -> TrackingEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not ready")
    return engine

def selection(e: TrackingEngine, index: Optional[int] = None):
    return {
        "index": index,
        "item_id": e.sequencer.current_item_id,
        "state": e.sequencer.state.value,
        "exhausted": e.sequencer.state is SequencerState.EXHAUSTED,
    }

@app.get("/healthz")
async def healthz():
    if not engine:
        return {"status": "starting"}

    last = engine.reconciler.last_run
    # Lenient: a few missed poll intervals before reporting lag
    if settings.RECONCILE_POLL_ENABLED and last and time.time() - last > settings.RECONCILE_POLL_INTERVAL_SECONDS * 5 + 5:
        return {"status": "lagging", "last_reconcile_age": time.time() - last}

    return {"status": "ok"}

@app.get("/status", dependencies=[Depends(get_token)])
async def status():
    if not engine:
        return {"status": "not_ready"}

    return {
        **engine.status().model_dump(mode="json"),
        "config": {
            "tick_interval": settings.TICK_INTERVAL_SECONDS,
            "poll_enabled": settings.RECONCILE_POLL_ENABLED,
            "poll_interval": settings.RECONCILE_POLL_INTERVAL_SECONDS,
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    # Simple prometheus-style text format
    if not engine:
        return ""

    s = engine.status()
    lines = [
        f'progresstrack_playlists {len(engine.playlists.list_playlists())}',
        f'progresstrack_completed_items {len(engine.ledger.completed_ids())}',
        f'progresstrack_tracking {1 if s.tracking_item_id else 0}',
        f'progresstrack_last_reconcile_timestamp {s.last_reconcile}',
        f'progresstrack_reconcile_writes_total {s.reconcile_writes}',
    ]
    for name, count in sorted(s.counters.items()):
        lines.append(f'progresstrack_events_total{{kind="{name}"}} {count}')
    return "\n".join(lines)

@app.get("/playlists", dependencies=[Depends(get_token)])
async def list_playlists():
    e = get_engine()
    return [p.dump() for p in e.playlists.list_playlists()]

@app.get("/playlists/{playlist_id}/stats", dependencies=[Depends(get_token)])
async def get_playlist_stats(playlist_id: str):
    e = get_engine()
    playlist = e.playlists.get_playlist(playlist_id)
    if playlist is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    records = {i.id: e.accumulator.snapshot(i.id) for i in playlist.items}
    return playlist_stats(playlist, records).model_dump()

@app.get("/history", dependencies=[Depends(get_token)])
async def history(days: int = 7):
    e = get_engine()
    return [d.model_dump() for d in completion_history(e.ledger.entries(), days)]

@app.post("/playlists/{playlist_id}/open", dependencies=[Depends(get_token)])
async def open_playlist(playlist_id: str, body: Optional[OpenRequest] = None):
    e = get_engine()
    try:
        index = e.open_playlist(playlist_id, body.index if body else None)
    except KeyError:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return selection(e, index)

@app.post("/player/ready", dependencies=[Depends(get_token)])
async def player_ready():
    e = get_engine()
    event = e.on_player_ready()
    return {"forwarded": event is not None}

@app.post("/player/state", dependencies=[Depends(get_token)])
async def player_state(body: StateChange):
    e = get_engine()
    event = e.on_player_state_change(body.state)
    return {"forwarded": event is not None, **selection(e, e.sequencer.current_index())}

@app.post("/player/error", dependencies=[Depends(get_token)])
async def player_error(body: PlayerError):
    e = get_engine()
    event = e.on_player_error(body.code)
    return {
        "forwarded": event is not None,
        "message": event.message if event else None,
        **selection(e, e.sequencer.current_index()),
    }

@app.post("/complete", dependencies=[Depends(get_token)])
async def complete():
    e = get_engine()
    try:
        index = e.mark_complete()
    except KeyError:
        raise HTTPException(status_code=404, detail="Current item no longer exists")
    return selection(e, index)

@app.post("/select/{index}", dependencies=[Depends(get_token)])
async def select(index: int):
    e = get_engine()
    try:
        chosen = e.select_item(index)
    except ValueError as err:
        raise HTTPException(status_code=400, detail=str(err))
    return selection(e, chosen)

@app.delete("/items/{item_id}", dependencies=[Depends(get_token)])
async def delete_item(item_id: str):
    e = get_engine()
    try:
        index = e.delete_item(item_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not found")
    return selection(e, index)

@app.post("/items/{item_id}/reset", dependencies=[Depends(get_token)])
async def reset_item(item_id: str):
    e = get_engine()
    try:
        item = e.reset_item(item_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not found")
    return item.dump()

@app.post("/items/{item_id}/progress", dependencies=[Depends(get_token)])
async def set_progress(item_id: str, body: ProgressUpdate):
    e = get_engine()
    try:
        item = e.set_progress(item_id, body.progress)
    except KeyError:
        raise HTTPException(status_code=404, detail="Item not found")
    return item.dump()

@app.post("/visibility", dependencies=[Depends(get_token)])
async def visibility():
    e = get_engine()
    e.on_visibility_regained()
    return selection(e, e.sequencer.current_index())

@app.post("/playlists", dependencies=[Depends(get_token)])
async def add_playlist(body: Playlist):
    e = get_engine()
    try:
        playlist = e.playlists.add_playlist(body)
    except ValueError as err:
        raise HTTPException(status_code=400, detail=str(err))
    return playlist.dump()

@app.delete("/playlists/{playlist_id}", dependencies=[Depends(get_token)])
async def delete_playlist(playlist_id: str):
    e = get_engine()
    try:
        e.playlists.delete_playlist(playlist_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Playlist not found")
    if e.sequencer.playlist_id == playlist_id:
        e.sequencer.revalidate()
    return {"deleted": playlist_id}

@app.post("/playlists/{playlist_id}/items", dependencies=[Depends(get_token)])
async def add_item(playlist_id: str, body: Item):
    e = get_engine()
    try:
        item = e.playlists.add_item(playlist_id, body)
    except KeyError:
        raise HTTPException(status_code=404, detail="Playlist not found")
    except ValueError as err:
        raise HTTPException(status_code=400, detail=str(err))
    return item.dump()
