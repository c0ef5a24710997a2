from __future__ import annotations

from flask import Flask, jsonify, request

from ..common.datetime_utils import parse_iso_datetime
from ..common.validators import require_enum, require_positive_int
from ..common.web import json_body, optional_datetime_arg, require_self_or_admin, to_json
from ..container import Container
from ..core.enums import AbsenceStatus
from ..core.exceptions import InvalidArgumentError


def register(app: Flask, container: Container) -> None:
    service = container.recovery_service

    @app.route("/api/members/<int:member_id>/absences", methods=["POST"], endpoint="record_absence")
    def record_absence(member_id: int):
        require_self_or_admin(member_id)
        data = json_body()
        absence = service.record_absence(
            member_id=member_id,
            session_id=require_positive_int(data.get("sessionId"), "sessionId"),
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        return jsonify(to_json(absence)), 201

    @app.route("/api/members/<int:member_id>/absences", methods=["GET"], endpoint="absence_history")
    def absence_history(member_id: int):
        require_self_or_admin(member_id)
        raw_status = request.args.get("status")
        status = require_enum(AbsenceStatus, raw_status, "status", error=InvalidArgumentError) if raw_status else None
        rows = service.get_absence_history(
            member_id=member_id,
            status=status,
            start=optional_datetime_arg("start"),
            end=optional_datetime_arg("end"),
        )
        return jsonify(to_json(rows))

    @app.route("/api/members/<int:member_id>/recovery-slots", methods=["GET"], endpoint="recovery_slots")
    def recovery_slots(member_id: int):
        require_self_or_admin(member_id)
        slots = service.list_available_recovery_slots(
            member_id=member_id,
            start=optional_datetime_arg("start"),
            end=optional_datetime_arg("end"),
        )
        return jsonify(to_json(slots))

    @app.route("/api/members/<int:member_id>/recoveries", methods=["POST"], endpoint="schedule_recovery")
    def schedule_recovery(member_id: int):
        require_self_or_admin(member_id)
        data = json_body()
        recovery = service.schedule_recovery(
            member_id=member_id,
            original_session_id=require_positive_int(data.get("originalSessionId"), "originalSessionId"),
            recovery_session_id=require_positive_int(data.get("recoverySessionId"), "recoverySessionId"),
        )
        return jsonify(to_json(recovery)), 201

    @app.route(
        "/api/members/<int:member_id>/absences/<int:absence_id>/cancel-recovery",
        methods=["POST"],
        endpoint="cancel_recovery",
    )
    def cancel_recovery(member_id: int, absence_id: int):
        require_self_or_admin(member_id)
        absence = service.cancel_recovery(member_id=member_id, absence_id=absence_id)
        return jsonify(to_json(absence))

    @app.route("/api/members/<int:member_id>/recovery-eligibility", methods=["GET"], endpoint="recovery_eligibility")
    def recovery_eligibility(member_id: int):
        require_self_or_admin(member_id)
        at = request.args.get("at")
        eligibility = service.get_recovery_eligibility(
            member_id=member_id,
            now=parse_iso_datetime(at, "at") if at else None,
        )
        return jsonify(to_json(eligibility))
