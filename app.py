import logging
from datetime import datetime, timezone

from dotenv import load_dotenv
from flask import Flask, request, jsonify

from config import Settings
from db import make_engine, make_session_factory, Base
from errors import ConfigurationError, JobNotFound, UpstreamError
from models import JOB_STATUSES, NAVIGATION_TYPES, MAX_ADDITIONAL_ROUTES
from recovery import RecoveryManager
from scheduler import SchedulerCore
from services.directions_service import DirectionsClient
from store import JobStore

load_dotenv()

logger = logging.getLogger(__name__)


def parse_int(name: str, v, default: int) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {name}")


def parse_float(name: str, v) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {name}")


def parse_bool(v) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "on", "yes")
    return bool(v)


def parse_datetime(name: str, v) -> datetime | None:
    if not v:
        return None
    try:
        dt = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid {name}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def job_fields_from_payload(payload: dict) -> dict:
    start_location = (payload.get("start_location") or "").strip()
    end_location = (payload.get("end_location") or "").strip()
    if not start_location or not end_location:
        raise ValueError("start_location and end_location are required")

    navigation_type = payload.get("navigation_type") or "driving"
    if navigation_type not in NAVIGATION_TYPES:
        raise ValueError(f"navigation_type must be one of {', '.join(NAVIGATION_TYPES)}")

    additional_routes = parse_int("additional_routes", payload.get("additional_routes"), 0)
    name = (payload.get("name") or "").strip() or f"{start_location} -> {end_location}"

    return {
        "name": name[:128],
        "start_name": payload.get("start_name"),
        "end_name": payload.get("end_name"),
        "start_location": start_location,
        "end_location": end_location,
        "cycle_seconds": max(0, parse_int("cycle_seconds", payload.get("cycle_seconds"), 0)),
        "cycle_minutes": parse_int("cycle_minutes", payload.get("cycle_minutes"), 60),
        "duration_days": parse_int("duration_days", payload.get("duration_days"), 7),
        "end_time": parse_datetime("end_time", payload.get("end_time")),
        "navigation_type": navigation_type,
        "avoid_highways": parse_bool(payload.get("avoid_highways", False)),
        "avoid_tolls": parse_bool(payload.get("avoid_tolls", False)),
        "additional_routes": min(max(additional_routes, 0), MAX_ADDITIONAL_ROUTES),
    }


def create_app(
    settings: Settings | None = None,
    store: JobStore | None = None,
    client: DirectionsClient | None = None,
    scheduler: SchedulerCore | None = None,
    restore: bool = True,
) -> Flask:
    s = settings or Settings()
    app = Flask(__name__)
    app.secret_key = s.SECRET_KEY

    if store is None:
        engine = make_engine(s.DATABASE_URL)
        Base.metadata.create_all(engine)
        store = JobStore(make_session_factory(engine))
    if client is None:
        client = DirectionsClient.from_settings(s)
    if scheduler is None:
        scheduler = SchedulerCore(store, client, min_interval_seconds=s.MIN_CYCLE_SECONDS)

    app.extensions["scheduler"] = scheduler
    if restore:
        RecoveryManager(store, scheduler).restore()

    @app.errorhandler(JobNotFound)
    def job_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(ConfigurationError)
    def configuration_error(e):
        return jsonify({"error": str(e)}), 503

    @app.errorhandler(UpstreamError)
    def upstream_error(e):
        return jsonify({"error": str(e), "status": e.status}), 502

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    def get_job_or_404(job_id: str):
        job = store.get_job(job_id)
        if not job:
            raise JobNotFound(job_id)
        return job

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/api/jobs")
    def api_jobs():
        status = request.args.get("status")
        if status and status not in JOB_STATUSES:
            raise ValueError(f"status must be one of {', '.join(JOB_STATUSES)}")
        return jsonify([j.to_dict() for j in store.list_jobs(status=status)])

    @app.post("/api/jobs")
    def api_create_job():
        payload = request.get_json(silent=True) or {}
        job = store.create_job(**job_fields_from_payload(payload))
        logger.info("Job %s: created (%s -> %s)", job.id, job.start_location, job.end_location)
        return jsonify(job.to_dict()), 201

    @app.get("/api/jobs/<job_id>")
    def api_job(job_id: str):
        return jsonify(get_job_or_404(job_id).to_dict())

    @app.delete("/api/jobs/<job_id>")
    def api_delete_job(job_id: str):
        get_job_or_404(job_id)
        scheduler.stop(job_id)
        store.delete_job(job_id)
        return jsonify({"ok": True})

    @app.post("/api/jobs/<job_id>/start")
    def api_start(job_id: str):
        scheduler.start(job_id)
        return jsonify(get_job_or_404(job_id).to_dict())

    @app.post("/api/jobs/<job_id>/pause")
    def api_pause(job_id: str):
        scheduler.pause(job_id)
        return jsonify(get_job_or_404(job_id).to_dict())

    @app.post("/api/jobs/<job_id>/resume")
    def api_resume(job_id: str):
        scheduler.resume(job_id)
        return jsonify(get_job_or_404(job_id).to_dict())

    @app.post("/api/jobs/<job_id>/stop")
    def api_stop(job_id: str):
        scheduler.stop(job_id)
        return jsonify(get_job_or_404(job_id).to_dict())

    @app.post("/api/jobs/<job_id>/collect")
    def api_collect(job_id: str):
        get_job_or_404(job_id)
        written = scheduler.run_collection_cycle(job_id)
        return jsonify({"snapshots": written})

    @app.get("/api/jobs/<job_id>/snapshots")
    def api_snapshots(job_id: str):
        get_job_or_404(job_id)
        since = parse_datetime("since", request.args.get("since"))
        return jsonify([x.to_dict() for x in store.list_snapshots(job_id, since=since)])

    @app.get("/api/scheduler/active")
    def api_active():
        return jsonify(scheduler.get_active_jobs())

    @app.get("/api/routes/preview")
    def api_route_preview():
        origin = (request.args.get("origin") or "").strip()
        destination = (request.args.get("destination") or "").strip()
        if not origin or not destination:
            raise ValueError("origin and destination are required")

        routes = client.get_route_preview(
            origin,
            destination,
            mode=request.args.get("mode"),
            avoid_highways=parse_bool(request.args.get("avoid_highways", "")),
            avoid_tolls=parse_bool(request.args.get("avoid_tolls", "")),
            alternatives=min(max(parse_int("additional_routes", request.args.get("additional_routes"), 0), 0), MAX_ADDITIONAL_ROUTES),
        )
        return jsonify({"routes": [r.to_dict() for r in routes]})

    @app.get("/api/geocode")
    def api_geocode():
        address = (request.args.get("address") or "").strip()
        if not address:
            raise ValueError("address is required")
        coords = client.geocode(address)
        if coords is None:
            return jsonify({"error": "Address not found"}), 404
        return jsonify({"lat": coords[0], "lng": coords[1]})

    @app.get("/api/geocode/reverse")
    def api_reverse_geocode():
        lat = parse_float("lat", request.args.get("lat"))
        lng = parse_float("lng", request.args.get("lng"))
        address = client.reverse_geocode(lat, lng)
        if address is None:
            return jsonify({"error": "No address found"}), 404
        return jsonify({"address": address})

    return app


if __name__ == "__main__":
    s = Settings()
    logging.basicConfig(level=s.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    create_app(s).run(host="0.0.0.0", port=s.PORT)
