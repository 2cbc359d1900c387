"""HTTP routes for provider discovery"""
import logging
from dataclasses import replace

from flask import Flask, jsonify, request

from models.errors import IndexUnavailable, InvalidArgument, OperationCancelled, ValidationError
from models.search import DEFAULT_PAGE_SIZE, SearchQuery
from services.search_service import SearchService
from utils.cancellation import Deadline

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT_SECONDS = 10.0


def register_error_handlers(app: Flask) -> None:
    """Map the discovery error taxonomy onto HTTP responses"""

    @app.errorhandler(ValidationError)
    def validation_error(error):
        return jsonify(error.to_dict()), 400

    @app.errorhandler(InvalidArgument)
    def invalid_argument(error):
        return jsonify({"status": "error", "type": "invalid_argument", "message": str(error)}), 400

    @app.errorhandler(IndexUnavailable)
    def index_unavailable(error):
        logger.error(f"Search index unavailable: {error}")
        return jsonify({
            "status": "error",
            "type": "index_unavailable",
            "message": "Search is temporarily unavailable",
        }), 503

    @app.errorhandler(OperationCancelled)
    def operation_cancelled(error):
        logger.warning(f"Search cancelled: {error}")
        return jsonify({"status": "error", "type": "cancelled", "message": str(error)}), 504

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"status": "error", "message": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({"status": "error", "message": "Internal server error"}), 500


def create_routes(app: Flask, search_service: SearchService, default_page_size: int = DEFAULT_PAGE_SIZE) -> None:
    """Register the search, health and readiness endpoints"""
    register_error_handlers(app)

    @app.route("/api/v1/search/providers", methods=["GET"])
    def search_providers():
        query = SearchQuery.from_args(request.args)
        if "pageSize" not in request.args:
            query = replace(query, page_size=default_page_size)

        result = search_service.search(query, deadline=Deadline.after(SEARCH_TIMEOUT_SECONDS))
        logger.info(
            f"Search lat={query.latitude} lng={query.longitude} radius={query.radius_km}km "
            f"page={query.page_number}: {len(result.items)} of {result.total_count}"
        )
        return jsonify(result.to_dict()), 200

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "healthy"}), 200

    @app.route("/ready", methods=["GET"])
    def ready():
        if search_service.is_available():
            return jsonify({"status": "ready"}), 200
        return jsonify({"status": "unavailable"}), 503
