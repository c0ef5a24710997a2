from __future__ import annotations

from flask import Flask, jsonify, request

from ..common.datetime_utils import parse_iso_datetime
from ..common.web import admin_required, current_caller, json_body, require_self_or_admin, to_json
from ..container import Container
from ..core.constants import DEFAULT_EXPIRING_THRESHOLD_DAYS
from ..core.exceptions import InvalidArgumentError


def register(app: Flask, container: Container) -> None:
    service = container.subscription_service

    @app.route("/api/members/<int:member_id>/subscription", methods=["PUT"], endpoint="update_subscription")
    @admin_required
    def update_subscription(member_id: int):
        data = json_body()
        subscription = service.update_subscription(
            member_id=member_id,
            subscription_type=data.get("type"),
            start_date=parse_iso_datetime(data.get("startDate"), "startDate"),
            end_date=parse_iso_datetime(data.get("endDate"), "endDate"),
            price=data.get("price"),
            confirmed_by=current_caller().member_id,
        )
        return jsonify(to_json(subscription))

    @app.route("/api/members/<int:member_id>/subscription/renewals", methods=["POST"], endpoint="process_renewal")
    @admin_required
    def process_renewal(member_id: int):
        data = json_body()
        paid = data.get("paid")
        if not isinstance(paid, bool):
            raise InvalidArgumentError("paid must be true or false")
        result = service.process_renewal(
            member_id=member_id,
            paid=paid,
            amount=data.get("amount"),
            confirmed_by=current_caller().member_id,
        )
        return jsonify(to_json(result))

    @app.route("/api/members/<int:member_id>/subscription/total-due", methods=["POST"], endpoint="calculate_total_due")
    @admin_required
    def calculate_total_due(member_id: int):
        total = service.calculate_total_due(member_id=member_id)
        return jsonify({"memberId": member_id, "totalDue": str(total)})

    @app.route("/api/members/<int:member_id>/permissions", methods=["GET"], endpoint="member_permissions")
    def member_permissions(member_id: int):
        require_self_or_admin(member_id)
        return jsonify(service.get_permissions(member_id=member_id).as_dict())

    @app.route("/api/members/<int:member_id>/payments", methods=["GET"], endpoint="payment_history")
    def payment_history(member_id: int):
        require_self_or_admin(member_id)
        return jsonify(to_json(service.get_payment_history(member_id=member_id)))

    @app.route("/api/subscriptions/expiring", methods=["GET"], endpoint="expiring_subscriptions")
    @admin_required
    def expiring_subscriptions():
        raw = request.args.get("thresholdDays")
        try:
            threshold = int(raw) if raw not in (None, "") else int(
                app.config.get("EXPIRING_THRESHOLD_DAYS", DEFAULT_EXPIRING_THRESHOLD_DAYS)
            )
        except ValueError:
            raise InvalidArgumentError("thresholdDays must be an integer")
        return jsonify(to_json(service.get_expiring_subscriptions(threshold_days=threshold)))

    @app.route("/api/subscriptions/sweep", methods=["POST"], endpoint="sweep_expired")
    @admin_required
    def sweep_expired():
        report = service.sweep_expired_subscriptions()
        body = to_json(report)
        body["ok"] = report.ok
        return jsonify(body), 200 if report.ok else 207
