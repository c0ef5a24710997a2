from __future__ import annotations

from flask import Flask, jsonify

from ..common.web import admin_required, json_body, to_json
from ..container import Container
from ..core.exceptions import InvalidArgumentError


def register(app: Flask, container: Container) -> None:
    service = container.attendance_service

    @app.route("/api/sessions/<int:session_id>/roster", methods=["POST"], endpoint="generate_roster")
    @admin_required
    def generate_roster(session_id: int):
        roster = service.generate_attendance_roster(session_id=session_id)
        return jsonify(to_json(roster))

    @app.route("/api/sessions/<int:session_id>/attendance", methods=["POST"], endpoint="mark_attendance")
    @admin_required
    def mark_attendance(session_id: int):
        statuses = json_body().get("statusByMember")
        if not isinstance(statuses, dict):
            raise InvalidArgumentError("statusByMember must be an object keyed by member id")
        result = service.mark_attendance(session_id=session_id, status_by_member=statuses)
        return jsonify(to_json(result))
