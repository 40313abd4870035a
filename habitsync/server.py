import time
from fastapi import FastAPI, Depends, HTTPException, Header, Response
from typing import Any, Optional
from .config import settings
from .commands import IncrementHabit, ToggleTimer
from .elapsed import elapsed
from .models import utcnow
from .store import SnapshotStore

app = FastAPI(title="Habit Progress Sync")
store: SnapshotStore = SnapshotStore()
service: Optional[Any] = None  # SyncService, set by main

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

@app.get("/healthz")
def healthz():
    if not service:
        return {"status": "starting"}

    last_sync = service.last_successful_sync
    # Lenient: a few missed intervals only counts as lagging
    if time.time() - last_sync > (settings.SYNC_INTERVAL_SECONDS * 3 + 60):
        return {"status": "lagging", "last_sync_age": time.time() - last_sync}

    return {"status": "ok"}

# Display surfaces

def _snapshot_payload(snap):
    data = snap.model_dump(mode="json")
    data["progress"] = snap.progress
    data["formatted_progress"] = snap.formatted_progress
    return data

@app.get("/snapshots")
def list_snapshots():
    return [_snapshot_payload(s) for s in store.read()]

@app.get("/snapshots/{habit_id}")
def get_snapshot(habit_id: str):
    snap = store.snapshot(habit_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    return _snapshot_payload(snap)

@app.get("/activities/{habit_id}")
def get_activity(habit_id: str):
    activity = store.read_activities().get(habit_id)
    if activity is None:
        raise HTTPException(status_code=404, detail="No timer activity")
    reading = elapsed(activity.state.base_elapsed_seconds, activity.state.session_start, utcnow())
    data = activity.model_dump(mode="json")
    data["elapsed_seconds"] = reading.elapsed_seconds
    data["is_running"] = reading.is_running
    return data

# One-way triggers, handled on the event loop that owns the command queue

def _submit(command):
    if not service:
        raise HTTPException(status_code=503, detail="Sync service not running")
    service.commands.submit(command)
    return {"status": "accepted"}

@app.post("/commands/toggle-timer", status_code=202, dependencies=[Depends(get_token)])
async def toggle_timer(command: ToggleTimer):
    return _submit(command)

@app.post("/commands/increment", status_code=202, dependencies=[Depends(get_token)])
async def increment(command: IncrementHabit):
    return _submit(command)

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not service:
        return {"status": "not_ready"}

    return {
        "tracked_habits": len(service.items.active_items()),
        "last_sync": service.last_successful_sync,
        "sync_count": service.sync_count,
        "failed_syncs": service.failed_syncs,
        "config": {
            "interval": settings.SYNC_INTERVAL_SECONDS,
            "shared_root": settings.SHARED_ROOT,
        }
    }

@app.get("/metrics")
def metrics():
    # Simple prometheus-style text format
    if not service:
        return Response("", media_type="text/plain")

    lines = [
        f'habitsync_last_sync_timestamp {service.last_successful_sync}',
        f'habitsync_syncs_total {service.sync_count}',
        f'habitsync_sync_failures_total {service.failed_syncs}',
        f'habitsync_reload_notifications_total {service.notifier.sent}',
        f'habitsync_reload_failures_total {service.notifier.failed}',
    ]
    return Response("\n".join(lines), media_type="text/plain")
