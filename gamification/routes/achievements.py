"""
Achievement routes — catalog admin, driver awards and progress.
"""
from flask import Blueprint, request, jsonify

from gamification.errors import ValidationError
from gamification.services import achievements

bp = Blueprint('achievements', __name__, url_prefix='/api/achievements')


def _correlation_id():
    return request.headers.get('X-Correlation-ID')


# ── Catalog ──────────────────────────────────────────────────────────────────

@bp.route('', methods=['GET'])
def list_achievements():
    active_only = request.args.get('active_only', 'false').lower() == 'true'
    return jsonify(achievements.list_achievements(
        category=request.args.get('category'),
        level=request.args.get('level'),
        active_only=active_only,
    ))


@bp.route('', methods=['POST'])
def create_achievement():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ('name', 'category', 'level', 'points', 'criteria') if k not in data]
    if missing:
        raise ValidationError("Missing required fields", {'missing': missing})
    result = achievements.create_achievement(
        name=data['name'],
        category=data['category'],
        level=data['level'],
        points=data['points'],
        criteria=data['criteria'],
        description=data.get('description', ''),
        badge_image_url=data.get('badge_image_url'),
        is_active=data.get('is_active', True),
    )
    return jsonify(result), 201


@bp.route('/<int:achievement_id>')
def get_achievement(achievement_id):
    return jsonify(achievements.get_achievement(achievement_id))


@bp.route('/<int:achievement_id>', methods=['PATCH'])
def update_achievement(achievement_id):
    data = request.get_json(silent=True) or {}
    return jsonify(achievements.update_achievement(achievement_id, **data))


@bp.route('/<int:achievement_id>', methods=['DELETE'])
def delete_achievement(achievement_id):
    achievements.delete_achievement(achievement_id)
    return '', 204


@bp.route('/top-achievers')
def top_achievers():
    limit = request.args.get('limit', 10, type=int)
    return jsonify(achievements.get_top_achievers(limit=limit))


# ── Drivers ──────────────────────────────────────────────────────────────────

@bp.route('/drivers/<driver_id>')
def driver_achievements(driver_id):
    return jsonify(achievements.get_driver_achievements(driver_id))


@bp.route('/drivers/<driver_id>/progress')
def driver_progress(driver_id):
    use_cache = request.args.get('refresh', 'false').lower() != 'true'
    return jsonify(achievements.get_driver_progress(driver_id, use_cache=use_cache))


@bp.route('/drivers/<driver_id>/check', methods=['POST'])
def check_driver_achievements(driver_id):
    """Re-evaluate the catalog against the driver's stored history."""
    earned = achievements.check_achievements(driver_id, correlation_id=_correlation_id())
    return jsonify({'driver_id': driver_id, 'earned': earned})


@bp.route('/drivers/<driver_id>/<int:achievement_id>', methods=['POST'])
def award_achievement(driver_id, achievement_id):
    data = request.get_json(silent=True) or {}
    result = achievements.award_achievement(
        driver_id, achievement_id,
        achievement_data=data.get('achievement_data'),
        correlation_id=_correlation_id(),
    )
    return jsonify(result), 201


@bp.route('/drivers/<driver_id>/<int:achievement_id>', methods=['DELETE'])
def revoke_achievement(driver_id, achievement_id):
    data = request.get_json(silent=True) or {}
    achievements.revoke_achievement(
        driver_id, achievement_id,
        reason=data.get('reason', ''),
        correlation_id=_correlation_id(),
    )
    return '', 204
