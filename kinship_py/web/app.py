from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from dataclasses import replace
from typing import Any, Dict, Optional
import logging

from ..config import load_config
from ..engine import Engine
from ..errors import (
    BridgeNotFound,
    DepthExceeded,
    DuplicateNotFound,
    EdgeNotFound,
    GraphError,
    InvalidQualifier,
    InvalidRelationshipType,
    LockTimeout,
    PersonNotFound,
)
from ..kinship import Locale
from ..models import Person
from ..search import search_people
from ..storage import EdgeSpec

app = FastAPI(title="kinship-py")

# Ensure basic logging is configured so integration-test server logs at INFO are visible
logging.basicConfig(level=logging.INFO)

cfg = load_config()

# The engine opens the database, so it is created at startup rather than on
# import; importing the module (tests, tooling) never touches the data dir.
engine: Optional[Engine] = None

_NOT_FOUND = (PersonNotFound, EdgeNotFound, DuplicateNotFound, BridgeNotFound)
_BAD_REQUEST = (InvalidRelationshipType, InvalidQualifier)
_UNAVAILABLE = (LockTimeout, DepthExceeded)


@app.on_event("startup")
def _create_engine_on_startup():
    global engine
    engine = Engine(cfg)
    logging.info("Engine initialized at %s", str(cfg.data_dir))


@app.on_event("shutdown")
def _close_engine_on_shutdown():
    global engine
    if engine is not None:
        engine.close()
        engine = None


@app.exception_handler(GraphError)
async def graph_error_handler(request: Request, exc: GraphError):
    if isinstance(exc, _NOT_FOUND):
        status = 404
    elif isinstance(exc, _BAD_REQUEST):
        status = 400
    elif isinstance(exc, _UNAVAILABLE):
        status = 503
    else:
        status = 409
    if status >= 500:
        logging.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


def _engine() -> Engine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


### Persons
@app.post("/api/person", status_code=201)
def api_create_person(data: Dict[str, Any]):
    data = dict(data)
    data.pop("id", None)
    data.pop("merged_into", None)
    try:
        p = _engine().store.add_person(Person.from_dict(data))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return p.to_dict()


@app.get("/api/person/{pid}")
def api_person(pid: str):
    """Return a person and their immediate relations."""
    eng = _engine()
    p = eng.store.require_person(pid)
    store = eng.store
    return {
        "person": p.to_dict(),
        "parents": [store.persons[x].to_dict() for x in store.parents_of(pid)],
        "children": [store.persons[x].to_dict() for x in store.children_of(pid)],
        "spouses": [{"person": store.persons[sid].to_dict(), "edge": e.to_dict()} for sid, e in store.spouses_of(pid)],
    }


@app.put("/api/person/{pid}")
def api_update_person(pid: str, data: Dict[str, Any]):
    store = _engine().store
    p = store.require_person(pid)
    merged = p.to_dict()
    merged.update({k: v for k, v in data.items() if k not in ("id", "merged_into")})
    try:
        updated = replace(Person.from_dict(merged), id=pid, merged_into=p.merged_into)
        store.update_person(updated)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return updated.to_dict()


@app.delete("/api/person/{pid}")
def api_delete_person(pid: str):
    if not _engine().store.delete_person(pid):
        raise HTTPException(status_code=404, detail="Person not found")
    return {"deleted": pid}


@app.get("/api/person/{pid}/edges")
def api_person_edges(pid: str):
    store = _engine().store
    store.require_person(pid)
    return [e.to_dict() for e in store.get_edges(pid)]


@app.get("/api/person/{pid}/ancestors")
def api_ancestors(pid: str, depth: Optional[int] = None, direction: str = "up"):
    eng = _engine()
    eng.store.require_person(pid)
    if direction == "up":
        walk = eng.traversal.ancestor_walk(pid, depth)
    elif direction == "down":
        walk = eng.traversal.descendant_walk(pid, depth)
    else:
        raise HTTPException(status_code=400, detail="direction must be 'up' or 'down'")
    return {"person": pid, "direction": direction, "truncated": walk.truncated, "hits": [h.to_dict() for h in walk.ordered()]}


### Edges
@app.post("/api/edges", status_code=201)
def api_add_edges(data: Dict[str, Any]):
    """Add one edge ({person_a, person_b, type_code, qualifiers}) or a batch ({"edges": [...]})."""
    items = data.get("edges") if "edges" in data else [data]
    try:
        specs = [EdgeSpec(d["person_a"], d["person_b"], d["type_code"], d.get("qualifiers") or {}) for d in items]
    except (KeyError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid edge payload: {exc}")
    store = _engine().store
    ids = store.add_edges(specs, idempotent=not data.get("strict", False))
    return {"edges": [store.get_edge(eid).to_dict() for eid in ids]}


@app.patch("/api/edges/{edge_id}")
def api_update_edge(edge_id: str, data: Dict[str, Any]):
    return _engine().store.update_edge(edge_id, **data).to_dict()


@app.delete("/api/edges/{edge_id}")
def api_remove_edge(edge_id: str):
    if not _engine().store.remove_edge(edge_id):
        raise HTTPException(status_code=404, detail="Edge not found")
    return {"deleted": edge_id}


### Relationships
@app.get("/api/relationship")
def api_relationship(a: str, b: str, locale: str = "en"):
    try:
        loc = Locale(locale)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported locale: {locale}")
    return _engine().relationship(a, b, loc)


@app.get("/api/search")
def api_search(q: str, limit: int = 50):
    persons = _engine().store.list_persons()
    return [p.to_dict() for p in search_people(persons, q, limit=limit)]


### Duplicates
@app.post("/api/duplicates/scan")
def api_scan_duplicates(min_confidence: Optional[float] = None):
    report = _engine().duplicates.scan(min_confidence)
    return {"pairs_checked": report.pairs_checked, "cancelled": report.cancelled, "duplicates": [d.to_dict() for d in report]}


@app.get("/api/duplicates")
def api_duplicates(
    status: Optional[str] = "pending",
    min_confidence: Optional[float] = None,
    max_confidence: Optional[float] = None,
    deceased_only: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
    sort_by: str = "confidence",
):
    det = _engine().duplicates
    try:
        queue = det.queue(status or None, min_confidence, max_confidence, deceased_only, limit, offset, sort_by)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    out = []
    for d in queue:
        item = d.to_dict()
        item["level"] = det.confidence_level(d.confidence_score)
        item["explanation"] = det.describe_reasons(d)
        out.append(item)
    return out


@app.post("/api/duplicates/{dup_id}/resolve")
def api_resolve_duplicate(dup_id: str, data: Dict[str, Any]):
    try:
        dup = _engine().duplicates.resolve(
            dup_id,
            data.get("action", ""),
            reviewer=data.get("reviewer"),
            kept_profile_id=data.get("kept_profile_id"),
            notes=data.get("notes"),
        )
    except GraphError:
        raise
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return dup.to_dict()


### Bridges
@app.post("/api/bridges", status_code=201)
def api_propose_bridge(data: Dict[str, Any]):
    missing = [name for name in ("requester", "target", "claimed_relationship") if not data.get(name)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing field(s): {', '.join(missing)}")
    req = _engine().bridges.propose(
        data["requester"],
        data["target"],
        data["claimed_relationship"],
        hint=data.get("common_ancestor_hint"),
        supporting_info=data.get("supporting_info"),
        qualifiers=data.get("qualifiers"),
    )
    return req.to_dict()


@app.get("/api/bridges")
def api_list_bridges(person: Optional[str] = None, status: Optional[str] = None, role: Optional[str] = None):
    try:
        found = _engine().bridges.list_requests(person, status, role)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return [r.to_dict() for r in found]


@app.post("/api/bridges/{request_id}/respond")
def api_respond_bridge(request_id: str, data: Dict[str, Any]):
    req = _engine().bridges.respond(
        request_id,
        bool(data.get("accept")),
        established_type=data.get("established_type"),
        responder=data.get("responder"),
        message=data.get("message"),
    )
    return req.to_dict()


@app.post("/api/bridges/{request_id}/withdraw")
def api_withdraw_bridge(request_id: str, data: Optional[Dict[str, Any]] = None):
    return _engine().bridges.withdraw(request_id, (data or {}).get("requester")).to_dict()


@app.post("/api/bridges/expire")
def api_expire_bridges():
    return {"expired": _engine().bridges.expire_stale()}
