"""
Status and control API for mail-relay.

Endpoints:
    GET  /api/status              Channel availability and processor state
    POST /api/status/process-now  Run a processing cycle immediately
    POST /api/feedback            Record whether a relayed email was relevant
"""

import logging
import time
from typing import Optional

from flask import Flask, jsonify, request

from .processing import EmailProcessor
from .scheduling import EmailScheduler

logger = logging.getLogger(__name__)


class Status:
    """API response status constants."""
    OK = "OK"
    DEGRADED = "DEGRADED"
    ERROR = "error"


def create_app(processor: EmailProcessor, scheduler: Optional[EmailScheduler] = None) -> Flask:
    """Create the Flask app bound to a processor (and optional scheduler)."""
    app = Flask(__name__)

    @app.route("/api/status")
    def get_status():
        status = {
            "status": Status.OK,
            "timestamp": int(time.time() * 1000),
        }

        try:
            status["channels"] = processor.get_channel_statuses()
        except Exception as e:
            logger.error(f"Channel status failed: {e}", exc_info=True)
            status["channels"] = []
            status["status"] = Status.DEGRADED

        try:
            status["processor"] = processor.get_status()
        except Exception as e:
            logger.error(f"Processor status failed: {e}", exc_info=True)
            status["status"] = Status.DEGRADED

        if scheduler is not None:
            status["scheduler"] = scheduler.get_status()

        return jsonify(status)

    @app.route("/api/status/process-now", methods=["POST"])
    def process_now():
        try:
            summary = processor.trigger_cycle_now()
        except Exception as e:
            logger.error(f"Manual processing failed: {e}", exc_info=True)
            return jsonify({"status": Status.ERROR, "error": "Processing failed"}), 500

        return jsonify({"status": "Processing triggered", "summary": summary.to_dict()})

    @app.route("/api/feedback", methods=["POST"])
    def record_feedback():
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body is required"}), 400
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400

        message_id = data.get("message_id")
        relevant = data.get("relevant")
        if not isinstance(message_id, str) or not message_id:
            return jsonify({"error": "message_id is required"}), 400
        if not isinstance(relevant, bool):
            return jsonify({"error": "relevant must be true or false"}), 400

        if not processor.store.record_feedback(message_id, relevant):
            return jsonify({"recorded": False, "error": "Unknown email"}), 404

        return jsonify({"recorded": True, "message_id": message_id})

    return app
