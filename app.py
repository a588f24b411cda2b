import logging
import os
import uuid

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

# enrichment_config reads the environment at import time.
load_dotenv()

import health_monitor
from deep_analysis import deep_analysis_with_summary
from enrichment_config import api_key
from flood_zones import get_flood_zones
from geocoding import GeocodingError, geocode_address
from hs_trace import TraceContext, clear_trace, set_trace
from listing_enrichment import ListingEnrichmentPipeline
from listings import ListingParseError, search_listings
from preferences import extract_preferences, map_preferences_to_search_params
from upstream_http import ConfigurationError, UpstreamError

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            # Unresolvable address (ZERO_RESULTS, etc.)
            if exc_type is not None and issubclass(exc_type, GeocodingError):
                sentry_sdk.add_breadcrumb(category="geocoding", message=msg, level="warning")
                return None
            # Provider outages, timeouts, bad bodies
            if exc_type is not None and issubclass(
                exc_type, (UpstreamError, requests.exceptions.RequestException)
            ):
                sentry_sdk.add_breadcrumb(category="upstream", message=msg, level="warning")
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Proxy fix: the PaaS reverse proxy sets X-Forwarded-For.  ProxyFix
# rewrites request.remote_addr to the real client IP so Flask-Limiter and
# logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting.  Analysis endpoints fan out to nine paid or rate-limited
# providers per call.  In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_ANALYSIS = os.environ.get("RATE_LIMIT_ANALYSIS", "20/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

# ---------------------------------------------------------------------------
# Startup: warn immediately if required config is missing
# ---------------------------------------------------------------------------
if not api_key("geocode"):
    logger.warning(
        "GOOGLE_MAPS_API_KEY is not set. "
        "Every analysis will fail until it is configured. "
        "For local development, copy .env.example to .env and add your key."
    )


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()


@app.after_request
def _after_request(response):
    response.headers["Access-Control-Allow-Origin"] = CORS_ORIGIN
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


def _traced(fn, *args):
    """Run fn under a request-scoped trace and log its summary."""
    trace_ctx = TraceContext(trace_id=getattr(g, "request_id", "unknown"))
    set_trace(trace_ctx)
    try:
        return fn(*args)
    finally:
        trace_ctx.log_summary()
        clear_trace()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _check_service_config():
    """
    Validate required service configuration.
    Returns (is_ok, missing_keys) tuple.
    """
    missing = []
    if not api_key("geocode"):
        missing.append("GOOGLE_MAPS_API_KEY")
    return (len(missing) == 0, missing)


def _analysis_error(e: Exception, address: str):
    """Map an analysis exception to a JSON error response."""
    if isinstance(e, ConfigurationError):
        logger.error("Analysis unavailable, missing config: %s", e.missing_keys)
        return jsonify({
            "error": "Service not configured",
            "message": str(e),
            "missing_keys": e.missing_keys,
        }), 503
    if isinstance(e, ValueError):
        # GeocodingError is a ValueError; so is a blank address
        logger.info("Address rejected %r: %s", address, e)
        return jsonify({"error": "Could not geocode address", "message": str(e)}), 400
    logger.exception("Analysis failed for %r", address)
    return jsonify({"error": "Analysis failed", "message": str(e)}), 500


def _flood_analysis(address: str):
    geo = geocode_address(address)
    flood = get_flood_zones(geo.lat, geo.lng)
    # floodZones is the FeatureCollection itself; found/message/error live under "flood".
    return {
        "geocode": geo.to_dict(),
        "floodZones": flood.flood_zones,
        "flood": flood.to_dict(),
    }


@app.route("/api/flood-analysis")
@limiter.limit(RATE_LIMIT_ANALYSIS)
def flood_analysis():
    address = (request.args.get("address") or "").strip()
    if not address:
        return jsonify({"error": "address query parameter is required"}), 400
    try:
        return jsonify(_traced(_flood_analysis, address))
    except Exception as e:
        return _analysis_error(e, address)


@app.route("/api/deep-analysis")
@limiter.limit(RATE_LIMIT_ANALYSIS)
def deep_analysis_route():
    address = (request.args.get("address") or "").strip()
    if not address:
        return jsonify({"error": "address query parameter is required"}), 400
    try:
        return jsonify(_traced(deep_analysis_with_summary, address))
    except Exception as e:
        return _analysis_error(e, address)


def _search(query: str, existing):
    preferences = extract_preferences(query, existing)
    params = map_preferences_to_search_params(preferences)
    listings = search_listings(params)
    enriched = ListingEnrichmentPipeline().enrich(listings)
    return {
        "success": True,
        "count": len(enriched),
        "listings": enriched,
        "preferences": preferences,
        "searchParams": params,
    }


@app.route("/api/search-listings", methods=["POST"])
@limiter.limit(RATE_LIMIT_ANALYSIS)
def search_listings_route():
    data = request.get_json(silent=True) or {}
    query = (data.get("query") or "").strip() if isinstance(data.get("query"), str) else ""
    if not query:
        return jsonify({"error": "query is required"}), 400

    existing = data.get("existingPreferences")
    if existing is not None and not isinstance(existing, dict):
        return jsonify({"error": "existingPreferences must be an object"}), 400

    # Checked up front so a missing key does not cost a model call first.
    if not api_key("rapidapi"):
        return jsonify({
            "error": "Listing search not configured",
            "details": "Make sure RAPIDAPI_KEY is set",
            "missing_keys": ["RAPIDAPI_KEY"],
        }), 503

    try:
        return jsonify(_traced(_search, query, existing))
    except ConfigurationError as e:
        return jsonify({"error": "Listing search not configured", "message": str(e),
                        "missing_keys": e.missing_keys}), 503
    except (UpstreamError, ListingParseError) as e:
        logger.warning("Listing search failed for %r: %s", query, e)
        return jsonify({"error": "Failed to fetch listings", "message": str(e)}), 502
    except Exception as e:
        logger.exception("Listing search crashed for %r", query)
        return jsonify({"error": "Failed to search listings", "message": str(e)}), 500


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Config status plus per-provider health.

    A provider being down degrades the status but not the HTTP code:
    analyses still return the other domains.  Only missing config is 503.
    """
    config_ok, missing = _check_service_config()
    services = health_monitor.get_status()
    down = sorted(name for name, s in services.items() if s.get("status") == "down")
    return jsonify({
        "status": "ok" if config_ok and not down else "degraded",
        "missing_keys": missing,
        "down_services": down,
        "services": services,
    }), 200 if config_ok else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify({"error": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    health_monitor.start_monitor()
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
