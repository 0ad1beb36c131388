"""Odometer based maintenance reminders.

Three maintenance classes are tracked per vehicle. Each has a service interval
and a warning threshold (both in km since the last service). Work order text is
matched against a keyword table to find which classes a repair covered.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from .domain import MaintenanceRecord, MaintenanceType, PartLine, ServiceLine, Vehicle


@dataclass(frozen=True)
class MaintenanceCycle:
    name: str
    interval: int
    warning_threshold: int


MAINTENANCE_CYCLES: dict[MaintenanceType, MaintenanceCycle] = {
    "oil_change": MaintenanceCycle("Engine oil change", interval=1500, warning_threshold=1000),
    "gearbox_oil": MaintenanceCycle("Gearbox oil change", interval=5000, warning_threshold=4500),
    "throttle_clean": MaintenanceCycle(
        "Injector, throttle body and clutch cleaning", interval=20000, warning_threshold=18000
    ),
}


@dataclass(frozen=True)
class KeywordRule:
    type: MaintenanceType
    keywords: tuple[str, ...]
    excludes: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if any(x in text for x in self.excludes):
            return False
        return any(k in text for k in self.keywords)


# Lower-case keywords, Vietnamese shop vocabulary plus English equivalents.
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("oil_change", keywords=("nhớt máy", "dầu máy", "engine oil", "oil change")),
    # generic oil words name the gearbox oil when a gearbox word is present
    KeywordRule(
        "oil_change",
        keywords=("thay nhớt", "thay dầu", "nhớt"),
        excludes=("hộp số", "gearbox", "transmission"),
    ),
    KeywordRule(
        "gearbox_oil",
        keywords=("nhớt hộp số", "dầu hộp số", "hộp số", "gearbox oil", "transmission oil"),
    ),
    KeywordRule(
        "throttle_clean",
        keywords=(
            "kim phun",
            "họng ga",
            "vệ sinh nồi",
            "béc phun",
            "buồng đốt",
            "injector",
            "throttle",
        ),
    ),
)


@dataclass(frozen=True)
class MaintenanceWarning:
    type: MaintenanceType
    name: str
    km_since_last_service: int
    km_until_due: int
    is_overdue: bool
    is_due_soon: bool
    last_service_km: Optional[int] = None
    last_service_date: Optional[datetime] = None


def detect_maintenance_types(text: str) -> set[MaintenanceType]:
    lowered = (text or "").lower()
    return {rule.type for rule in KEYWORD_RULES if rule.matches(lowered)}


def detect_maintenances(
    part_lines: Iterable[PartLine],
    service_lines: Iterable[ServiceLine],
    issue_text: Optional[str] = None,
) -> set[MaintenanceType]:
    detected: set[MaintenanceType] = set()
    for p in part_lines:
        detected |= detect_maintenance_types(p.name)
    for s in service_lines:
        detected |= detect_maintenance_types(s.description)
    if issue_text:
        detected |= detect_maintenance_types(issue_text)
    return detected


def check_vehicle_maintenance(vehicle: Vehicle) -> list[MaintenanceWarning]:
    """Warnings for a vehicle, overdue first, then by km remaining until due.

    A vehicle without an odometer reading has no warnings.
    """
    current_km = vehicle.current_km or 0
    if current_km == 0:
        return []

    warnings: list[MaintenanceWarning] = []
    for mtype, cycle in MAINTENANCE_CYCLES.items():
        last = vehicle.last_maintenances.get(mtype)
        last_km = last.km if last else 0
        since = current_km - last_km
        is_overdue = since >= cycle.interval
        is_due_soon = not is_overdue and since >= cycle.warning_threshold
        if not (is_overdue or is_due_soon):
            continue
        warnings.append(
            MaintenanceWarning(
                type=mtype,
                name=cycle.name,
                km_since_last_service=since,
                km_until_due=cycle.interval - since,
                is_overdue=is_overdue,
                is_due_soon=is_due_soon,
                last_service_km=last.km if last else None,
                last_service_date=last.date if last else None,
            )
        )

    warnings.sort(key=lambda w: (not w.is_overdue, w.km_until_due))
    return warnings


def update_vehicle_maintenances(
    vehicle: Vehicle,
    detected_types: Iterable[MaintenanceType],
    current_km: int,
    *,
    now: Optional[datetime] = None,
) -> Vehicle:
    record = MaintenanceRecord(km=current_km, date=now or datetime.now())
    history = dict(vehicle.last_maintenances)
    for mtype in detected_types:
        history[mtype] = record
    return replace(vehicle, current_km=current_km, last_maintenances=history)


def vehicles_needing_maintenance(
    vehicles: Iterable[Vehicle],
) -> list[tuple[Vehicle, list[MaintenanceWarning]]]:
    due = []
    for v in vehicles:
        warnings = check_vehicle_maintenance(v)
        if warnings:
            due.append((v, warnings))
    # sort() is stable, so vehicles keep their input order within each group
    due.sort(key=lambda item: not any(w.is_overdue for w in item[1]))
    return due
