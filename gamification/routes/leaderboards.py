"""
Leaderboard routes — boards, entries, driver standings and rollover triggers.
"""
from flask import Blueprint, request, jsonify

from gamification.engine.base import parse_date
from gamification.errors import ValidationError
from gamification.services import leaderboards

bp = Blueprint('leaderboards', __name__, url_prefix='/api/leaderboards')


@bp.route('', methods=['GET'])
def list_leaderboards():
    active_only = request.args.get('active_only', 'true').lower() == 'true'
    return jsonify(leaderboards.list_leaderboards(
        leaderboard_type=request.args.get('type'),
        timeframe=request.args.get('timeframe'),
        region=request.args.get('region'),
        active_only=active_only,
    ))


@bp.route('', methods=['POST'])
def create_leaderboard():
    """Create a board for an explicit period, or the current calendar period when none is given."""
    data = request.get_json(silent=True) or {}
    for key in ('leaderboard_type', 'timeframe'):
        if not data.get(key):
            raise ValidationError(f"{key} is required")

    if data.get('start_period') or data.get('end_period'):
        result = leaderboards.create_leaderboard(
            data['leaderboard_type'],
            data['timeframe'],
            parse_date(data.get('start_period')),
            parse_date(data.get('end_period')),
            region=data.get('region'),
            name=data.get('name'),
            bonus_structure=data.get('bonus_structure'),
        )
    else:
        result = leaderboards.create_current_leaderboard(
            data['leaderboard_type'],
            data['timeframe'],
            region=data.get('region'),
            bonus_structure=data.get('bonus_structure'),
        )
    return jsonify(result), 201


@bp.route('/current')
def current_leaderboards():
    return jsonify(leaderboards.get_current_leaderboards(region=request.args.get('region')))


@bp.route('/ending-soon')
def ending_soon():
    days = request.args.get('days', type=int)
    return jsonify(leaderboards.find_ending_soon(days_threshold=days, timeframe=request.args.get('timeframe')))


@bp.route('/<int:leaderboard_id>')
def get_leaderboard(leaderboard_id):
    return jsonify(leaderboards.get_leaderboard(leaderboard_id))


@bp.route('/<int:leaderboard_id>/entries')
def leaderboard_entries(leaderboard_id):
    page = request.args.get('page', 1, type=int)
    page_size = request.args.get('page_size', 50, type=int)
    return jsonify(leaderboards.get_leaderboard_entries(leaderboard_id, page=page, page_size=page_size))


@bp.route('/<int:leaderboard_id>/top')
def top_drivers(leaderboard_id):
    limit = request.args.get('limit', 10, type=int)
    return jsonify(leaderboards.get_top_drivers(leaderboard_id, limit=limit))


@bp.route('/<int:leaderboard_id>/drivers/<driver_id>')
def driver_entry(leaderboard_id, driver_id):
    return jsonify(leaderboards.get_driver_entry(leaderboard_id, driver_id))


@bp.route('/<int:leaderboard_id>/bonus-preview')
def bonus_preview(leaderboard_id):
    rank = request.args.get('rank', type=int)
    if rank is None or rank < 1:
        raise ValidationError("rank must be a positive integer")
    return jsonify({
        'leaderboard_id': leaderboard_id,
        'rank': rank,
        'bonus_amount': leaderboards.preview_bonus(leaderboard_id, rank),
    })


@bp.route('/<int:leaderboard_id>/recalculate', methods=['POST'])
def recalculate(leaderboard_id):
    return jsonify(leaderboards.recalculate_leaderboard(leaderboard_id))


@bp.route('/<int:leaderboard_id>/finalize', methods=['POST'])
def finalize(leaderboard_id):
    return jsonify(leaderboards.finalize_leaderboard(leaderboard_id))


@bp.route('/process-ending', methods=['POST'])
def process_ending():
    """Enqueue the rollover of every board ending within the threshold."""
    from gamification.jobs import enqueue_process_ending_leaderboards

    data = request.get_json(silent=True) or {}
    job_id = enqueue_process_ending_leaderboards(
        days_threshold=data.get('days_threshold'),
        timeframe=data.get('timeframe'),
    )
    return jsonify({'job_id': job_id, 'status': 'queued'}), 202


@bp.route('/drivers/<driver_id>')
def driver_leaderboards(driver_id):
    active_only = request.args.get('active_only', 'true').lower() == 'true'
    return jsonify(leaderboards.get_driver_leaderboards(driver_id, active_only=active_only))
