# bomabnb/main.py
import logging
import time

from flask import Flask, g, jsonify, request

from bomabnb.blueprints import ALL_BLUEPRINTS
from bomabnb.blueprints.guards import require_role
from bomabnb.config import Config
from bomabnb.database import Base, close_db, engine
from bomabnb.observability import (
    check_database_health,
    configure_logging,
    ensure_request_id,
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
)
from bomabnb.services.session_resolver import Role

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
for blueprint in ALL_BLUEPRINTS:
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


# Initialize database tables
def init_database():
    """Initialize database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)


init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    labels = {
        "method": request.method,
        "endpoint": request.endpoint or request.path,
        "status": str(response.status_code),
    }
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency("http_request_latency_ms", duration_ms, labels=labels)
    if response.status_code >= 400:
        increment_counter("http_errors_total", labels=labels)
    if response.status_code >= 500:
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    request_id = getattr(g, 'request_id', None)
    if request_id:
        response.headers[Config.REQUEST_ID_HEADER] = request_id
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.errorhandler(404)
def not_found(_error):
    return jsonify({"success": False, "message": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(_error):
    return jsonify({"success": False, "message": "Method not allowed"}), 405


@app.errorhandler(500)
def internal_error(_error):
    logger.error("Unhandled error while serving %s", request.path)
    return jsonify({"success": False, "message": "An unexpected error occurred"}), 500


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
@require_role(Role.ADMIN)
def admin_metrics():
    return jsonify(get_metrics_snapshot())


if __name__ == '__main__':
    app.run(debug=Config.DEBUG, host=Config.FLASK_RUN_HOST, port=Config.FLASK_RUN_PORT)
