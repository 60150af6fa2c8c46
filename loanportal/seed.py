"""Provision demo accounts and catalog rows.

    python -m loanportal.seed --password password123

Safe to re-run: existing emails and asset names are skipped, missing roles are
re-granted, and a failure on one row is logged without aborting the batch.
"""
from __future__ import annotations

import argparse
import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models, policy
from .db import SessionLocal, init_db
from .errors import LoanPortalError
from .policy import Caller
from .schemas import AssetCreate, ProfilePatch
from .usecases import catalog, identity, profiles

logger = logging.getLogger(__name__)

SYSTEM = Caller(identity_id="system", roles=frozenset({"admin"}))

DEFAULT_PASSWORD = "password123"
COHORT_YEARS = (2021, 2022, 2023, 2024)
STUDENTS_PER_CLASS = 5

ADMINS = [
    ("admin@sekolah.ac.id", "Admin Sistem", "ADM001"),
    ("admin2@sekolah.ac.id", "Admin Backup", "ADM002"),
]

STAFF = [
    ("dosen1@sekolah.ac.id", "Dr. Budi Santoso, M.Kom", "DSN001"),
    ("dosen2@sekolah.ac.id", "Siti Rahayu, S.Kom, M.T", "DSN002"),
    ("dosen3@sekolah.ac.id", "Ahmad Fauzi, M.Eng", "DSN003"),
    ("dosen4@sekolah.ac.id", "Dr. Rina Wati, M.Kom", "DSN004"),
    ("dosen5@sekolah.ac.id", "Dedi Susanto, S.T, M.T", "DSN005"),
]

# department -> number of classes per cohort
CLASSES = {"trkj": 4, "ti": 5, "trmm": 3}

ROOMS = [
    "Lab Komputer 1", "Lab Komputer 2", "Lab Jaringan", "Lab Multimedia",
    "Ruang Kelas 301", "Ruang Kelas 302", "Ruang Kelas 303", "Ruang Kelas 304",
    "Ruang Dosen 1", "Ruang Dosen 2", "Ruang Rapat", "Perpustakaan",
    "Aula", "Workshop Mekanik", "Lab Elektronika", "Gudang Alat",
]
PROJECTORS = 10


def student_rows(cohort_years: Iterable[int], students_per_class: int):
    for dept, classes in CLASSES.items():
        code = dept.upper()
        for year in cohort_years:
            for kelas in range(1, classes + 1):
                for i in range(1, students_per_class + 1):
                    nim = f"{year}{code}{kelas}{i:03d}"
                    yield {
                        "email": f"{nim.lower()}@student.ac.id",
                        "full_name": f"Mahasiswa {code} {kelas}{chr(64 + i)}",
                        "id_number": nim,
                        "department": dept,
                        "class_label": f"{code}-{kelas}",
                        "cohort_year": year,
                    }


def asset_rows():
    for room in ROOMS:
        yield AssetCreate(name=f"Kunci {room}", kind="key", location=room)
    for i in range(1, PROJECTORS + 1):
        yield AssetCreate(
            name=f"Infokus {i:02d}",
            kind="projector",
            location=f"Portable Unit {i}",
            condition_notes="Kondisi baik",
        )


def _ensure_user(db: Session, password: str, role: str, email: str, full_name: str, **fields) -> Optional[str]:
    """Returns "created", "existing" or None when the row failed."""
    try:
        ident = identity.find_identity(db, email)
        outcome = "existing"
        if not ident:
            ident = identity.signup(db, email, password, full_name)
            outcome = "created"

        # also fills in profiles left bare by an earlier failed run
        prof = db.get(models.Profile, ident.id)
        wanted = dict(fields, full_name=full_name)
        stale = {k: v for k, v in wanted.items() if prof is None or getattr(prof, k) != v}
        if stale:
            profiles.patch_profile(db, SYSTEM, ident.id, ProfilePatch(**stale))
        if not policy.has_role(db, ident.id, role):
            profiles.grant_role(db, SYSTEM, ident.id, role)
        return outcome
    except LoanPortalError as e:
        logger.error("[SEED] user %s failed: %s", email, e.message)
        return None


def seed_demo_data(
    db: Session,
    password: str = DEFAULT_PASSWORD,
    cohort_years: Iterable[int] = COHORT_YEARS,
    students_per_class: int = STUDENTS_PER_CLASS,
) -> dict:
    stats = {"admins": 0, "staff": 0, "students": 0, "assets": 0, "skipped": 0, "failed": 0}

    def tally(key: str, outcome: Optional[str]) -> None:
        if outcome == "created":
            stats[key] += 1
        elif outcome == "existing":
            stats["skipped"] += 1
        else:
            stats["failed"] += 1

    logger.info("[SEED] creating admin users")
    for email, name, nip in ADMINS:
        tally("admins", _ensure_user(db, password, "admin", email, name, id_number=nip))

    logger.info("[SEED] creating staff users")
    for email, name, nip in STAFF:
        tally("staff", _ensure_user(db, password, "staff", email, name, id_number=nip))

    logger.info("[SEED] creating student users")
    for row in student_rows(cohort_years, students_per_class):
        email, name = row.pop("email"), row.pop("full_name")
        tally("students", _ensure_user(db, password, "student", email, name, **row))

    logger.info("[SEED] creating assets")
    existing = set(db.execute(select(models.Asset.name)).scalars().all())
    for body in asset_rows():
        if body.name in existing:
            stats["skipped"] += 1
            continue
        try:
            catalog.create_asset(db, SYSTEM, body)
            stats["assets"] += 1
        except LoanPortalError as e:
            logger.error("[SEED] asset %s failed: %s", body.name, e.message)
            stats["failed"] += 1

    logger.info("[SEED] done %s", stats)
    return stats


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed demo users and assets.")
    parser.add_argument("--password", default=DEFAULT_PASSWORD)
    parser.add_argument("--students-per-class", type=int, default=STUDENTS_PER_CLASS)
    parser.add_argument("--cohorts", type=int, nargs="*", default=list(COHORT_YEARS))
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    init_db()
    with SessionLocal() as db:
        stats = seed_demo_data(db, args.password, args.cohorts, args.students_per_class)
    print(stats)


if __name__ == "__main__":
    main()
