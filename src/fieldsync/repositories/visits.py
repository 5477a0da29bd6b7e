"""
visits.py - Visit repository.

A visit opens when a user checks into a company and closes when the
user leaves. A user has at most one open visit; callers check
get_active_visit() before start_visit().
"""

import logging
import math
from datetime import datetime

from fieldsync.errors import BusinessRuleError
from fieldsync.models import ReportVisit, Visit, VisitReport, visit_from_row
from fieldsync.repositories.base import Repository
from fieldsync.sync.outbox import Operation
from fieldsync.utils.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


def _bound(value: datetime | str) -> str:
    return format_timestamp(value) if isinstance(value, datetime) else value


def _elapsed_seconds(start: str, end: str) -> int:
    return math.floor((parse_timestamp(end) - parse_timestamp(start)).total_seconds())


class VisitRepository(Repository):
    def get_active_visit(self, user_id: int) -> Visit | None:
        row = self._store.query_one(
            "SELECT v.*, c.name AS company_name FROM visits v "
            "LEFT JOIN companies c ON c.id = v.company_id "
            "WHERE v.user_id = ? AND v.end_time IS NULL AND v.deleted_at IS NULL "
            "ORDER BY v.start_time DESC LIMIT 1",
            (user_id,),
        )
        return None if row is None else visit_from_row(row)

    def get_visit(self, visit_id: int) -> Visit | None:
        row = self._store.query_one(
            "SELECT v.*, c.name AS company_name FROM visits v "
            "LEFT JOIN companies c ON c.id = v.company_id "
            "WHERE v.id = ? AND v.deleted_at IS NULL",
            (visit_id,),
        )
        return None if row is None else visit_from_row(row)

    def start_visit(
        self,
        user_id: int,
        company_id: int,
        role_id: int | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        no_gps_signal: bool = False,
    ) -> int:
        """
        Open a visit at a company.

        Args:
            user_id: Visiting user
            company_id: Visited company
            role_id: Role the user acts in
            latitude: Start position, ignored when no_gps_signal is set
            longitude: Start position, ignored when no_gps_signal is set
            no_gps_signal: Office flag, the visit starts without a position

        Returns:
            New visit id
        """
        if no_gps_signal:
            latitude = longitude = None
        now = self._now()
        values = {
            "user_id": user_id,
            "company_id": company_id,
            "role_id": role_id,
            "start_time": now,
            "latitude": latitude,
            "longitude": longitude,
            "no_gps_signal": bool(no_gps_signal),
            "created_at": now,
            "updated_at": now,
        }
        with self._store.transaction():
            visit_id = self._insert("visits", values)
            self._outbox.enqueue("visits", visit_id, Operation.INSERT, values)
        logger.info(f"User {user_id} started visit {visit_id} at company {company_id}")
        return visit_id

    def end_visit(
        self,
        visit_id: int,
        end_latitude: float | None = None,
        end_longitude: float | None = None,
        no_gps_signal_end: bool = False,
    ) -> Visit:
        """
        Close an open visit and record its duration in whole seconds.

        Raises:
            NotFoundError: If the visit does not exist
            BusinessRuleError: If the visit is already closed
        """
        if no_gps_signal_end:
            end_latitude = end_longitude = None
        with self._store.transaction():
            current = self._require("visits", visit_id, "visit")
            if current["end_time"] is not None:
                raise BusinessRuleError(f"Visit {visit_id} already ended", rule="visit_closed")
            end_time = self._now()
            values = {
                "end_time": end_time,
                "duration": _elapsed_seconds(current["start_time"], end_time),
                "end_latitude": end_latitude,
                "end_longitude": end_longitude,
                "no_gps_signal_end": bool(no_gps_signal_end),
                "updated_at": end_time,
            }
            assignments = ", ".join(f"{c} = ?" for c in values)
            self._store.execute(f"UPDATE visits SET {assignments} WHERE id = ?", [*values.values(), visit_id])
            self._outbox.enqueue("visits", visit_id, Operation.UPDATE, values)
        logger.info(f"Visit {visit_id} ended after {values['duration']}s")
        return self.get_visit(visit_id)

    def get_visit_reports(
        self,
        start: datetime | str,
        end: datetime | str,
        company_id: int | None = None,
        user_id: int | None = None,
    ) -> list[VisitReport]:
        """Finished visits started within [start, end], grouped per user and company."""
        sql = (
            "SELECT v.id, v.user_id, u.username, v.company_id, c.name AS company_name, "
            "v.start_time, v.end_time, v.duration, v.latitude, v.longitude, v.no_gps_signal, "
            "v.end_latitude, v.end_longitude, v.no_gps_signal_end "
            "FROM visits v "
            "JOIN users u ON u.id = v.user_id "
            "JOIN companies c ON c.id = v.company_id "
            "WHERE v.start_time >= ? AND v.start_time <= ? "
            "AND v.end_time IS NOT NULL AND v.deleted_at IS NULL"
        )
        params: list = [_bound(start), _bound(end)]
        if company_id is not None:
            sql += " AND v.company_id = ?"
            params.append(company_id)
        if user_id is not None:
            sql += " AND v.user_id = ?"
            params.append(user_id)
        sql += " ORDER BY u.username, c.name, v.start_time"

        reports: dict[tuple[int, int], VisitReport] = {}
        for row in self._store.query(sql, params):
            key = (row["user_id"], row["company_id"])
            report = reports.get(key)
            if report is None:
                report = reports[key] = VisitReport(
                    user_id=row["user_id"],
                    username=row["username"],
                    company_id=row["company_id"],
                    company_name=row["company_name"],
                )
            duration = row["duration"]
            if duration is None:
                duration = _elapsed_seconds(row["start_time"], row["end_time"])
            report.visits.append(ReportVisit(
                id=row["id"],
                start_time=row["start_time"],
                end_time=row["end_time"],
                duration=duration,
                start_latitude=row["latitude"],
                start_longitude=row["longitude"],
                no_gps_signal_start=bool(row["no_gps_signal"]),
                end_latitude=row["end_latitude"],
                end_longitude=row["end_longitude"],
                no_gps_signal_end=bool(row["no_gps_signal_end"]),
            ))
            report.total_duration += duration
        return list(reports.values())
