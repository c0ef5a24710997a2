from __future__ import annotations

from flask import Flask, jsonify

from ..common.web import admin_required, to_json
from ..container import Container
from ..core.exceptions import NotFoundError


def register(app: Flask, container: Container) -> None:
    service = container.reminder_service

    @app.route("/api/reminders/due", methods=["GET"], endpoint="due_reminders")
    @admin_required
    def due_reminders():
        return jsonify(to_json(service.list_due()))

    @app.route("/api/reminders/<int:reminder_id>/dispatched", methods=["POST"], endpoint="mark_reminder_dispatched")
    @admin_required
    def mark_reminder_dispatched(reminder_id: int):
        if not service.mark_dispatched(reminder_id=reminder_id):
            raise NotFoundError(f"Pending reminder {reminder_id} does not exist")
        return jsonify({"reminderId": reminder_id, "status": "dispatched"})
