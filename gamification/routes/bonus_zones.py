"""
Bonus zone routes — zone admin plus position and radius lookups.
"""
from flask import Blueprint, request, jsonify

from gamification.config import DEFAULT_ZONE_MULTIPLIER, DEFAULT_ZONE_RADIUS_KM
from gamification.errors import ValidationError
from gamification.services import bonus_zones

bp = Blueprint('bonus_zones', __name__, url_prefix='/api/bonus-zones')


def _coordinates():
    latitude = request.args.get('latitude', type=float)
    longitude = request.args.get('longitude', type=float)
    if latitude is None or longitude is None:
        raise ValidationError("latitude and longitude query parameters are required")
    return latitude, longitude


@bp.route('', methods=['GET'])
def list_zones():
    active_only = request.args.get('active_only', 'false').lower() == 'true'
    return jsonify(bonus_zones.list_bonus_zones(active_only=active_only))


@bp.route('', methods=['POST'])
def create_zone():
    """Polygon zone from `boundary`, or a circular one from `center_lat`/`center_lng`."""
    data = request.get_json(silent=True) or {}
    if 'boundary' in data:
        result = bonus_zones.create_bonus_zone(
            name=data.get('name'),
            boundary=data['boundary'],
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            multiplier=data.get('multiplier', DEFAULT_ZONE_MULTIPLIER),
            reason=data.get('reason', ''),
            is_active=data.get('is_active', True),
        )
    elif 'center_lat' in data and 'center_lng' in data:
        result = bonus_zones.create_circular_bonus_zone(
            name=data.get('name'),
            center_lat=data['center_lat'],
            center_lng=data['center_lng'],
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            radius_km=data.get('radius_km', DEFAULT_ZONE_RADIUS_KM),
            multiplier=data.get('multiplier', DEFAULT_ZONE_MULTIPLIER),
            reason=data.get('reason', ''),
        )
    else:
        raise ValidationError("Either boundary or center_lat/center_lng is required")
    return jsonify(result), 201


@bp.route('/active')
def active_zones():
    return jsonify(bonus_zones.get_active_bonus_zones())


@bp.route('/check')
def check_position():
    latitude, longitude = _coordinates()
    return jsonify(bonus_zones.check_position_in_bonus_zone(latitude, longitude))


@bp.route('/nearby')
def zones_nearby():
    latitude, longitude = _coordinates()
    radius_km = request.args.get('radius_km', DEFAULT_ZONE_RADIUS_KM, type=float)
    return jsonify(bonus_zones.get_bonus_zones_in_radius(latitude, longitude, radius_km))


@bp.route('/<int:zone_id>')
def get_zone(zone_id):
    return jsonify(bonus_zones.get_bonus_zone(zone_id))


@bp.route('/<int:zone_id>', methods=['PATCH'])
def update_zone(zone_id):
    data = request.get_json(silent=True) or {}
    return jsonify(bonus_zones.update_bonus_zone(zone_id, **data))


@bp.route('/<int:zone_id>/deactivate', methods=['POST'])
def deactivate_zone(zone_id):
    return jsonify(bonus_zones.deactivate_bonus_zone(zone_id))


@bp.route('/<int:zone_id>', methods=['DELETE'])
def delete_zone(zone_id):
    bonus_zones.delete_bonus_zone(zone_id)
    return '', 204
