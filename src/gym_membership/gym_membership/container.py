from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .attendance.service import AttendanceLedgerService
from .core import constants
from .database.connection import DatabaseConnection, DBConfig
from .directory.memory_store import InMemoryDirectoryStore
from .directory.mysql_directory_store import MySQLDirectoryStore
from .directory.repository import DirectoryStore
from .recovery.service import RecoveryService
from .reminders.memory_reminder_repository import InMemoryReminderRepository
from .reminders.mysql_reminder_repository import MySQLReminderRepository
from .reminders.repository import ReminderRepository
from .reminders.service import ReminderService
from .subscriptions.service import SubscriptionService


@dataclass(frozen=True)
class Container:
    directory: DirectoryStore
    reminders_repo: ReminderRepository

    reminder_service: ReminderService
    subscription_service: SubscriptionService
    recovery_service: RecoveryService
    attendance_service: AttendanceLedgerService


def _setting(settings: Any, name: str, default):
    value = getattr(settings, name, None)
    return default if value is None else value


def build_container(
    *,
    settings: Any,
    directory: Optional[DirectoryStore] = None,
    reminders_repo: Optional[ReminderRepository] = None,
) -> Container:
    max_attempts = int(_setting(settings, "TX_MAX_ATTEMPTS", constants.DEFAULT_TX_MAX_ATTEMPTS))
    tx_timeout = getattr(settings, "TX_TIMEOUT_SECONDS", None)

    if directory is None or reminders_repo is None:
        backend = str(_setting(settings, "STORE_BACKEND", "mysql")).lower()
        if backend == "memory":
            directory = directory or InMemoryDirectoryStore(max_attempts=max_attempts)
            reminders_repo = reminders_repo or InMemoryReminderRepository()
        elif backend == "mysql":
            conn = DatabaseConnection.get_instance(DBConfig.from_dict(getattr(settings, "DB_CONFIG")))
            directory = directory or MySQLDirectoryStore(conn, max_attempts=max_attempts)
            reminders_repo = reminders_repo or MySQLReminderRepository(conn)
        else:
            raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")

    reminder_service = ReminderService(
        reminders_repo,
        lead_days=int(_setting(settings, "EXPIRY_REMINDER_LEAD_DAYS", constants.EXPIRY_REMINDER_LEAD_DAYS)),
    )
    subscription_service = SubscriptionService(directory, reminder_service, tx_timeout=tx_timeout)
    recovery_service = RecoveryService(
        directory,
        monthly_quota=int(_setting(settings, "MONTHLY_RECOVERY_QUOTA", constants.MONTHLY_RECOVERY_QUOTA)),
        window_days=int(_setting(settings, "RECOVERY_WINDOW_DAYS", constants.DEFAULT_RECOVERY_WINDOW_DAYS)),
        tx_timeout=tx_timeout,
    )
    attendance_service = AttendanceLedgerService(directory, tx_timeout=tx_timeout)

    return Container(
        directory=directory,
        reminders_repo=reminders_repo,
        reminder_service=reminder_service,
        subscription_service=subscription_service,
        recovery_service=recovery_service,
        attendance_service=attendance_service,
    )
