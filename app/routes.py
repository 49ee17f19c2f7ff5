from flask import Blueprint, jsonify
from datetime import datetime, timezone

from models import Methodology

routes_bp = Blueprint("routes", __name__, url_prefix="")

@routes_bp.route('/api/health', endpoint='api_health')
def api_health():
    return jsonify({
        'status': 'ok',
        'time': datetime.now(timezone.utc).isoformat()
    }), 200

@routes_bp.route('/api/methodologies', endpoint='methodologies')
def methodologies():
    # Choices offered to the user; anything else is sent as auto
    return jsonify({
        'methodologies': [m.value for m in Methodology],
        'default': Methodology.AUTO.value
    }), 200
