"""
Score routes — calculate a load's score, read the latest score and history.
"""
from flask import Blueprint, request, jsonify

from gamification.engine.base import parse_timestamp
from gamification.errors import ValidationError
from gamification.services import scores

bp = Blueprint('scores', __name__, url_prefix='/api/scores')


def _date_range():
    start = parse_timestamp(request.args.get('start'))
    end = parse_timestamp(request.args.get('end'))
    if start is None or end is None:
        raise ValidationError("start and end query parameters are required")
    return start, end


@bp.route('/calculate', methods=['POST'])
def calculate_score():
    """Score a completed load assignment and update the driver's rankings."""
    data = request.get_json(silent=True) or {}
    if 'assignment' not in data:
        raise ValidationError("assignment is required")
    result = scores.calculate_score_for_load(
        data['assignment'],
        data.get('metrics'),
        region=data.get('region'),
        driver_name=data.get('driver_name'),
        correlation_id=request.headers.get('X-Correlation-ID'),
    )
    return jsonify(result), 201


@bp.route('/drivers/<driver_id>')
def driver_score(driver_id):
    return jsonify(scores.get_driver_score(driver_id))


@bp.route('/drivers/<driver_id>', methods=['POST'])
def adjust_driver_score(driver_id):
    """Manual adjustment — appends a new snapshot from explicit component scores."""
    data = request.get_json(silent=True) or {}
    result = scores.update_driver_score(
        driver_id,
        data.get('components') or {},
        reason=data.get('reason', ''),
        region=data.get('region'),
        correlation_id=request.headers.get('X-Correlation-ID'),
    )
    return jsonify(result), 201


@bp.route('/drivers/<driver_id>/history')
def driver_score_history(driver_id):
    page = request.args.get('page', 1, type=int)
    page_size = request.args.get('page_size', 20, type=int)
    return jsonify(scores.get_score_history(driver_id, page=page, page_size=page_size))


@bp.route('/drivers/<driver_id>/range')
def driver_scores_in_range(driver_id):
    start, end = _date_range()
    return jsonify({'driver_id': driver_id, 'scores': scores.get_scores_by_date_range(driver_id, start, end)})


@bp.route('/drivers/<driver_id>/historical')
def driver_historical_score(driver_id):
    """Average of the stored snapshots in [start, end)."""
    start, end = _date_range()
    return jsonify(scores.get_historical_score(driver_id, start, end))
