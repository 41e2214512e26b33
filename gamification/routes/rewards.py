"""
Reward routes — driver bonuses, summaries, fuel discounts and payouts.
"""
from flask import Blueprint, request, jsonify

from gamification.config import DEFAULT_FUEL_PURCHASE
from gamification.engine.base import parse_timestamp
from gamification.services import rewards

bp = Blueprint('rewards', __name__, url_prefix='/api/rewards')


def _paid_filter():
    paid = request.args.get('paid')
    if paid is None:
        return None
    return paid.lower() == 'true'


@bp.route('/drivers/<driver_id>/bonuses')
def driver_bonuses(driver_id):
    return jsonify(rewards.get_driver_bonuses(
        driver_id,
        paid=_paid_filter(),
        start=parse_timestamp(request.args.get('start')),
        end=parse_timestamp(request.args.get('end')),
        min_amount=request.args.get('min_amount', type=float),
        max_amount=request.args.get('max_amount', type=float),
    ))


@bp.route('/drivers/<driver_id>/unpaid')
def driver_unpaid(driver_id):
    return jsonify({
        'driver_id': driver_id,
        'bonuses': rewards.get_unpaid_bonuses(driver_id),
        'total_amount': rewards.get_total_unpaid_amount(driver_id),
    })


@bp.route('/drivers/<driver_id>/summary')
def driver_summary(driver_id):
    return jsonify(rewards.get_driver_reward_summary(
        driver_id,
        start=parse_timestamp(request.args.get('start')),
        end=parse_timestamp(request.args.get('end')),
    ))


@bp.route('/drivers/<driver_id>/fuel-discount')
def driver_fuel_discount(driver_id):
    purchase_amount = request.args.get('purchase_amount', DEFAULT_FUEL_PURCHASE, type=float)
    return jsonify(rewards.get_driver_fuel_discount(driver_id, purchase_amount))


@bp.route('/bonuses/<int:bonus_id>')
def get_bonus(bonus_id):
    return jsonify(rewards.get_driver_bonus(bonus_id))


@bp.route('/bonuses/<int:bonus_id>/pay', methods=['POST'])
def pay_bonus(bonus_id):
    return jsonify(rewards.mark_bonus_as_paid(bonus_id, request.headers.get('X-Correlation-ID')))


@bp.route('/leaderboards/<int:leaderboard_id>', methods=['POST'])
def pay_leaderboard(leaderboard_id):
    return jsonify(rewards.process_leaderboard_rewards(leaderboard_id))


@bp.route('/payouts', methods=['POST'])
def run_payouts():
    """Enqueue a payout run for unpaid bonuses."""
    from gamification.jobs import enqueue_bonus_payouts

    data = request.get_json(silent=True) or {}
    job_id = enqueue_bonus_payouts(driver_id=data.get('driver_id'))
    return jsonify({'job_id': job_id, 'status': 'queued'}), 202
