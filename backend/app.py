import asyncio
import itertools
import logging
import os
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from clocksync.decision import ActionWeights
from clocksync.detector import CausalityChecker
from clocksync.logger import setup_logger
from clocksync.orchestrator import Simulation, SimulationConfig, SimulationResult
from clocksync.trace import EventTrace

logger = logging.getLogger("clocksync.backend")

app = FastAPI(title="clocksync")

# CORS for dev (allowing Vite dev server etc.)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Log directory setup
LOG_DIR = os.environ.get("CLOCKSYNC_LOG_DIR", os.path.join(os.path.dirname(__file__), "logs"))

latest = {"result": None}
run_ids = itertools.count(1)
ws_listeners = []


class SimulationRequest(BaseModel):
    clock: str = "lamport"
    num_nodes: int = Field(3, ge=1, le=64)
    iterations: int = Field(10, ge=0, le=1000)
    capacity: int = Field(10, ge=1, le=10000)
    weights: Tuple[float, float, float] = (1, 1, 2)
    seed: Optional[int] = None
    event_delay: float = Field(0.0, ge=0, le=5)


def _payload(result: SimulationResult):
    return {
        "summary": result.summary(),
        "trace": result.trace_path,
        "clocks": {str(n): list(c) if isinstance(c, tuple) else c for n, c in result.clocks.items()},
        "events": [e.to_dict() for e in result.events],
    }


def _latest() -> SimulationResult:
    result = latest["result"]
    if result is None:
        raise HTTPException(status_code=404, detail="No simulation has run yet")
    return result


def _push_ws(record):
    for cb in list(ws_listeners):
        try:
            cb(record)
        except Exception:
            logger.exception("websocket push failed")


# --- API Endpoints ---

@app.post("/simulations")
async def create_simulation(req: SimulationRequest):
    try:
        config = SimulationConfig(
            num_nodes=req.num_nodes,
            iterations=req.iterations,
            capacity=req.capacity,
            clock=req.clock,
            weights=ActionWeights(*req.weights),
            event_delay=req.event_delay,
            seed=req.seed,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # every run gets its own trace file so concurrent runs never share one
    trace = EventTrace(log_dir=LOG_DIR, file_name=f"trace-{next(run_ids)}.jsonl")
    sim = Simulation(config, trace=trace)
    sim.register_listener(_push_ws)
    result = await sim.run()
    latest["result"] = result
    return _payload(result)


@app.get("/simulations/latest")
def latest_simulation():
    return _payload(_latest())


@app.get("/summary")
def summary():
    result = _latest()
    per_node = CausalityChecker.summarize(result.events)
    return {str(n): counts for n, counts in per_node.items()}


@app.get("/anomalies")
def anomalies(limit: int = 200):
    result = _latest()
    anomaly_log = os.path.join(LOG_DIR, "anomalies.jsonl")
    # the file reflects the latest check only
    os.makedirs(LOG_DIR, exist_ok=True)
    open(anomaly_log, "w").close()
    recs = CausalityChecker(log_path=anomaly_log).check(result.events)
    recent = recs[-limit:] if limit > 0 else []
    return {"count": len(recs), "recent": recent}


@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
    await ws.accept()
    loop = asyncio.get_running_loop()

    async def push_msg_to_client(msg):
        try:
            await ws.send_json(msg)
        except Exception:
            logger.debug("dropping trace event for closed websocket")

    def trace_cb(msg):
        loop.call_soon_threadsafe(lambda: loop.create_task(push_msg_to_client(msg)))

    ws_listeners.append(trace_cb)
    try:
        await ws.send_json({"type": "info", "payload": "connected"})
        while True:
            # client messages are ignored; this only notices the disconnect
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if trace_cb in ws_listeners:
            ws_listeners.remove(trace_cb)


if __name__ == "__main__":
    setup_logger(log_dir=LOG_DIR)
    uvicorn.run("backend.app:app", host="127.0.0.1", port=8000, reload=False)
