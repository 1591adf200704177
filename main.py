import asyncio
import json
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import (
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pyVmomi import vmodl

from config.settings import METRICS_ENABLED, VSPHERE_HOST
from core.errors import VSphereError
from core.vm_controller import VSphereController
from core.metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    init_static_metrics,
    start_background_collectors,
)
from core.logger import log_event
from schemas.node_schema import NodeCreateSchema

vm_controller = VSphereController()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if METRICS_ENABLED:
        init_static_metrics()
        start_background_collectors(vm_controller.list_nodes)
        log_event("[app] Metrics enabled and collectors started")
    yield


app = FastAPI(
    title="vSphere Node Manager API",
    description=(
        "Provision and manage compute nodes on VMware vSphere.\n\n"
        "Features:\n"
        "- Clone templates into nodes with a requested hardware profile and networks\n"
        "- Guest post-configuration through VMware Tools (NICs, hostname, disk growth)\n"
        "- Reboot / resume / suspend / destroy\n"
        "- Prometheus metrics"
    ),
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(VSphereError)
async def vsphere_error_handler(request: Request, exc: VSphereError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(vmodl.MethodFault)
async def method_fault_handler(request: Request, exc: vmodl.MethodFault):
    log_event(f"[app] vSphere fault on {request.url.path}: {exc.msg}")
    return JSONResponse(status_code=502, content={"detail": exc.msg or type(exc).__name__})


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    endpoint = request.url.path
    method = request.method

    if not METRICS_ENABLED or endpoint == "/metrics":
        return await call_next(request)

    start_time = time.time()
    try:
        response = await call_next(request)
        return response
    finally:
        duration = time.time() - start_time
        REQUEST_COUNT.labels(method=method, endpoint=endpoint).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)


@app.get("/", tags=["System"])
def root():
    return {
        "message": "vSphere Node Manager API is running",
        "version": app.version,
        "vcenter": VSPHERE_HOST,
    }


@app.post("/nodes", tags=["Nodes"])
def create_node(payload: NodeCreateSchema):
    try:
        template = payload.to_template()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = vm_controller.create_node(
        group=payload.group,
        name=payload.name,
        template=template,
    )
    return JSONResponse(status_code=201, content={"status": "created", **result})


@app.get("/nodes", tags=["Nodes"])
def list_nodes(ids: Optional[List[str]] = Query(None)):
    if ids:
        return {"nodes": vm_controller.list_nodes_by_ids(ids)}
    return {"nodes": vm_controller.list_nodes()}


@app.get("/nodes/{name}", tags=["Nodes"])
def get_node(name: str):
    return vm_controller.get_node(name)


@app.delete("/nodes/{name}", tags=["Nodes"])
def destroy_node(name: str):
    vm_controller.destroy_node(name)
    return {"status": "destroyed", "name": name}


@app.post("/nodes/{name}/reboot", tags=["Nodes"])
def reboot_node(name: str):
    vm_controller.reboot_node(name)
    return {"status": "rebooted", "name": name}


@app.post("/nodes/{name}/resume", tags=["Nodes"])
def resume_node(name: str):
    vm_controller.resume_node(name)
    return {"status": "resumed", "name": name}


@app.post("/nodes/{name}/suspend", tags=["Nodes"])
def suspend_node(name: str):
    vm_controller.suspend_node(name)
    return {"status": "suspended", "name": name}


@app.post("/nodes/{name}/template", tags=["Images"])
def mark_as_template(name: str):
    return {"status": "template", "image": vm_controller.mark_as_template(name)}


@app.delete("/nodes/{name}/template", tags=["Images"])
def mark_as_virtual_machine(name: str):
    return {"status": "virtual_machine", "node": vm_controller.mark_as_virtual_machine(name)}


@app.get("/images", tags=["Images"])
def list_images():
    return {"images": vm_controller.list_images()}


@app.get("/images/{name}", tags=["Images"])
def get_image(name: str):
    return vm_controller.get_image(name)


@app.get("/hardware-profiles", tags=["Catalog"])
def list_hardware_profiles():
    return {"hardware_profiles": vm_controller.list_hardware_profiles()}


@app.get("/locations", tags=["Catalog"])
def list_locations():
    return {"locations": vm_controller.list_locations()}


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    if not METRICS_ENABLED:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.websocket("/ws/nodes/{name}/status")
async def node_status_stream(websocket: WebSocket, name: str):
    await websocket.accept()
    log_event(f"[ws-status] Client connected for node {name}")
    try:
        while True:
            state = await asyncio.to_thread(vm_controller.get_node_state, name)
            await websocket.send_text(json.dumps(state))
            await asyncio.sleep(5.0)
    except WebSocketDisconnect:
        log_event(f"[ws-status] Client disconnected for node {name}")
    except Exception as e:  # noqa: BLE001
        log_event(f"[ws-status] Error for node {name}: {e}")
        await websocket.close()
