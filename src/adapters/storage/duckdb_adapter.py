"""DuckDB Storage Adapter.

This adapter implements the AllergyStoragePort and VocabularyPort contracts on
top of DuckDB, an in-process database that needs no server.

Architecture:
    - Implements AllergyStoragePort and VocabularyPort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - Allergies are soft-deleted: retirement flips a flag, rows are never deleted
    - run_in_transaction() groups a whole save into one DuckDB transaction;
      individual operations called outside a transaction run in their own
    - Audit trail tables are append-only
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import duckdb
import pandas as pd

from src.domain.allergies import Allergies
from src.domain.allergy import Allergen, Allergy, AllergyReaction, Concept, OTHER_NON_CODED_UUID
from src.domain.enums import AllergyStatus
from src.domain.ports import (
    AllergyStoragePort,
    Result,
    StorageError,
    VocabularyError,
    VocabularyPort,
)
from src.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')

OTHER_NON_CODED_NAME = "Other non-coded"

_ALLERGY_SELECT = """
    SELECT
        a.allergy_id, a.patient_id, a.allergen_type,
        a.coded_allergen_uuid, ca.concept_id AS coded_allergen_concept_id, ca.name AS coded_allergen_name,
        a.non_coded_allergen,
        a.severity_uuid, sv.concept_id AS severity_concept_id, sv.name AS severity_name,
        a.comment, a.list_position, a.retired, a.retire_reason, a.date_retired,
        a.superseded_by, a.date_created
    FROM allergies a
    LEFT JOIN concepts ca ON ca.uuid = a.coded_allergen_uuid
    LEFT JOIN concepts sv ON sv.uuid = a.severity_uuid
"""

_REACTION_SELECT = """
    SELECT
        r.allergy_id, r.reaction_uuid, rc.concept_id AS reaction_concept_id,
        rc.name AS reaction_name, r.reaction_non_coded, r.sort_order
    FROM allergy_reactions r
    JOIN allergies a ON a.allergy_id = r.allergy_id
    LEFT JOIN concepts rc ON rc.uuid = r.reaction_uuid
"""


def _na_to_none(value: Any) -> Any:
    """Map pandas missing markers (NaN, NaT, None) to None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _to_datetime(value: Any) -> Optional[datetime]:
    value = _na_to_none(value)
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def _to_concept(uuid_value: Any, concept_id: Any, name: Any) -> Optional[Concept]:
    uuid_value = _na_to_none(uuid_value)
    if uuid_value is None:
        return None
    concept_id = _na_to_none(concept_id)
    return Concept(
        uuid=str(uuid_value),
        concept_id=int(concept_id) if concept_id is not None else None,
        name=_na_to_none(name),
    )


class DuckDBAdapter(AllergyStoragePort, VocabularyPort):
    """DuckDB implementation of the allergy storage and vocabulary ports.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)
        other_non_coded_uuid: Uuid of the "other non-coded" sentinel concept

    Example Usage:
        ```python
        from src.infrastructure.config_manager import get_database_config

        adapter = DuckDBAdapter(db_config=get_database_config())
        result = adapter.initialize_schema()
        if result.is_success():
            allergies = adapter.load_active_allergies("2").value
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None,
        other_non_coded_uuid: str = OTHER_NON_CODED_UUID
    ):
        """Initialize DuckDB adapter.

        Note:
            If both db_config and db_path are provided, db_config takes precedence.
            If neither is provided, defaults to in-memory database.
        """
        self.read_only = False
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
            self.read_only = db_config.read_only
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self.other_non_coded_uuid = other_non_coded_uuid
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._in_transaction = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily, then reused)."""
        if self._connection is None:
            try:
                if self.db_path == ":memory:":
                    self._connection = duckdb.connect(self.db_path)
                else:
                    self._connection = duckdb.connect(self.db_path, read_only=self.read_only)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def _ensure_schema(self) -> None:
        if not self._initialized:
            self.initialize_schema().unwrap("initialize_schema")

    def initialize_schema(self) -> Result[None]:
        """Initialize database schema and seed the sentinel concept.

        Creates tables for:
        - concepts: Controlled vocabulary entries
        - allergies: Every allergy version, active and retired
        - allergy_reactions: Reactions owned by an allergy version
        - patient_allergy_status: Status tag per patient
        - audit_log: Coarse-grained audit events
        - change_audit_log: Field-level change events

        Returns:
            Result[None]: Success or failure result
        """
        if self.read_only:
            self._initialized = True
            return Result.success_result(None)

        try:
            conn = self._get_connection()

            conn.execute("""
                CREATE TABLE IF NOT EXISTS concepts (
                    uuid VARCHAR PRIMARY KEY,
                    concept_id INTEGER,
                    name VARCHAR
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS allergies (
                    allergy_id VARCHAR PRIMARY KEY,
                    patient_id VARCHAR NOT NULL,
                    allergen_type VARCHAR NOT NULL,
                    coded_allergen_uuid VARCHAR,
                    non_coded_allergen VARCHAR,
                    severity_uuid VARCHAR,
                    comment VARCHAR,
                    list_position INTEGER,
                    retired BOOLEAN NOT NULL DEFAULT FALSE,
                    retire_reason VARCHAR,
                    date_retired TIMESTAMP,
                    superseded_by VARCHAR,
                    date_created TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS allergy_reactions (
                    reaction_id VARCHAR PRIMARY KEY,
                    allergy_id VARCHAR NOT NULL,
                    reaction_uuid VARCHAR,
                    reaction_non_coded VARCHAR,
                    sort_order INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS patient_allergy_status (
                    patient_id VARCHAR PRIMARY KEY,
                    allergy_status VARCHAR NOT NULL,
                    date_changed TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    audit_id VARCHAR PRIMARY KEY,
                    event_type VARCHAR NOT NULL,
                    event_timestamp TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    record_id VARCHAR,
                    details JSON,
                    severity VARCHAR
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS change_audit_log (
                    change_id VARCHAR PRIMARY KEY,
                    table_name VARCHAR NOT NULL,
                    record_id VARCHAR,
                    field_name VARCHAR NOT NULL,
                    old_value VARCHAR,
                    new_value VARCHAR,
                    change_type VARCHAR NOT NULL,
                    changed_at TIMESTAMP NOT NULL,
                    reconciliation_id VARCHAR,
                    changed_by VARCHAR
                )
            """)

            # Indexed columns are never updated (DuckDB index constraint)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_allergies_patient ON allergies(patient_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_reactions_allergy ON allergy_reactions(allergy_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_change_reconciliation ON change_audit_log(reconciliation_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_log(event_type)")

            conn.execute(
                "INSERT OR IGNORE INTO concepts (uuid, concept_id, name) VALUES (?, ?, ?)",
                [self.other_non_coded_uuid, None, OTHER_NON_CODED_NAME]
            )

            self._initialized = True
            logger.info("Database schema initialized successfully")

            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        """Run fn in one DuckDB transaction; nested calls join the outer one.

        Raises:
            Whatever fn raises, after rolling back
        """
        if self._in_transaction:
            return fn()

        self._ensure_schema()
        conn = self._get_connection()
        conn.begin()
        self._in_transaction = True
        try:
            value = fn()
            conn.commit()
            return value
        except Exception:
            conn.rollback()
            logger.error("Transaction rolled back", exc_info=True)
            raise
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_allergies(self, patient_id: str, include_retired: bool) -> list[Allergy]:
        conn = self._get_connection()

        where = "WHERE a.patient_id = ?" if include_retired else "WHERE a.patient_id = ? AND NOT a.retired"
        order = "ORDER BY a.date_created, a.list_position" if include_retired else "ORDER BY a.list_position, a.date_created"
        allergies_df = conn.execute(f"{_ALLERGY_SELECT} {where} {order}", [patient_id]).fetchdf()

        if allergies_df.empty:
            return []

        reactions_df = conn.execute(
            f"{_REACTION_SELECT} {where} ORDER BY r.allergy_id, r.sort_order",
            [patient_id]
        ).fetchdf()
        reactions_by_allergy: dict[str, list[AllergyReaction]] = {}
        for allergy_id, group in reactions_df.groupby("allergy_id", sort=False):
            reactions_by_allergy[allergy_id] = [
                AllergyReaction(
                    reaction=_to_concept(row["reaction_uuid"], row["reaction_concept_id"], row["reaction_name"]),
                    reaction_non_coded=_na_to_none(row["reaction_non_coded"]),
                )
                for row in group.to_dict("records")
            ]

        allergies = []
        for row in allergies_df.to_dict("records"):
            allergies.append(Allergy(
                allergy_id=row["allergy_id"],
                patient_id=row["patient_id"],
                allergen=Allergen(
                    allergen_type=row["allergen_type"],
                    coded_allergen=_to_concept(
                        row["coded_allergen_uuid"], row["coded_allergen_concept_id"], row["coded_allergen_name"]
                    ),
                    non_coded_allergen=_na_to_none(row["non_coded_allergen"]),
                ),
                severity=_to_concept(row["severity_uuid"], row["severity_concept_id"], row["severity_name"]),
                comment=_na_to_none(row["comment"]),
                reactions=reactions_by_allergy.get(row["allergy_id"], []),
                retired=bool(row["retired"]),
                retire_reason=_na_to_none(row["retire_reason"]),
                date_retired=_to_datetime(row["date_retired"]),
                superseded_by=_na_to_none(row["superseded_by"]),
                date_created=_to_datetime(row["date_created"]),
            ))
        return allergies

    def load_active_allergies(self, patient_id: str) -> Result[Allergies]:
        """Load the active allergy list and status tag for a patient."""
        try:
            self._ensure_schema()
            entries = self._load_allergies(patient_id, include_retired=False)

            row = self._get_connection().execute(
                "SELECT allergy_status FROM patient_allergy_status WHERE patient_id = ?",
                [patient_id]
            ).fetchone()
            explicit_status = None
            if row is not None and row[0] != AllergyStatus.SEE_LIST.value:
                explicit_status = AllergyStatus(row[0])

            logger.debug(f"Loaded {len(entries)} active allergies for patient {patient_id}")
            return Result.success_result(
                Allergies(entries, patient_id=patient_id, explicit_status=explicit_status)
            )

        except Exception as e:
            error_msg = f"Failed to load allergies: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="load_active_allergies", details={"patient_id": patient_id}),
                error_type="StorageError"
            )

    def load_allergy_history(self, patient_id: str) -> Result[list[Allergy]]:
        """Load every allergy version for a patient, oldest first."""
        try:
            self._ensure_schema()
            return Result.success_result(self._load_allergies(patient_id, include_retired=True))
        except Exception as e:
            error_msg = f"Failed to load allergy history: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="load_allergy_history", details={"patient_id": patient_id}),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def persist(self, allergy: Allergy, position: int) -> Result[str]:
        """Insert a new allergy version and its reactions.

        Parameters:
            allergy: Allergy without identity, owned by a patient
            position: Display position within the patient's active list

        Returns:
            Result[str]: Assigned allergy identity or error
        """
        if allergy.allergy_id is not None:
            return Result.failure_result(
                StorageError(
                    f"Allergy {allergy.allergy_id} already has an identity",
                    operation="persist"
                ),
                error_type="StorageError"
            )
        if allergy.patient_id is None:
            return Result.failure_result(
                StorageError("Allergy has no owning patient", operation="persist"),
                error_type="StorageError"
            )

        allergy_id = str(uuid.uuid4())

        def insert() -> None:
            conn = self._get_connection()
            conn.execute("""
                INSERT INTO allergies (
                    allergy_id, patient_id, allergen_type, coded_allergen_uuid,
                    non_coded_allergen, severity_uuid, comment, list_position,
                    retired, date_created
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, FALSE, ?)
            """, [
                allergy_id,
                allergy.patient_id,
                allergy.allergen.allergen_type.value,
                allergy.allergen.coded_allergen.uuid if allergy.allergen.coded_allergen else None,
                allergy.allergen.non_coded_allergen,
                allergy.severity.uuid if allergy.severity else None,
                allergy.comment,
                position,
                datetime.now(),
            ])

            for sort_order, reaction in enumerate(allergy.reactions):
                conn.execute("""
                    INSERT INTO allergy_reactions (
                        reaction_id, allergy_id, reaction_uuid, reaction_non_coded, sort_order
                    ) VALUES (?, ?, ?, ?, ?)
                """, [
                    str(uuid.uuid4()),
                    allergy_id,
                    reaction.reaction.uuid if reaction.reaction else None,
                    reaction.reaction_non_coded,
                    sort_order,
                ])

        try:
            self.run_in_transaction(insert)
            logger.debug(f"Persisted allergy {allergy_id} for patient {allergy.patient_id}")
            return Result.success_result(allergy_id)
        except Exception as e:
            error_msg = f"Failed to persist allergy: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="persist", details={"patient_id": allergy.patient_id}),
                error_type="StorageError"
            )

    def update_position(self, allergy_id: str, position: int) -> Result[None]:
        """Move an unchanged allergy to a new display position."""
        try:
            self._ensure_schema()
            self._get_connection().execute(
                "UPDATE allergies SET list_position = ? WHERE allergy_id = ?",
                [position, allergy_id]
            )
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to update allergy position: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="update_position", details={"allergy_id": allergy_id}),
                error_type="StorageError"
            )

    def retire(
        self,
        allergy: Allergy,
        reason: str,
        superseded_by: Optional[str] = None
    ) -> Result[None]:
        """Retire (void) an active allergy version.

        Fails when the allergy is unknown or already retired, which also
        surfaces a concurrent save that got there first.
        """
        try:
            self._ensure_schema()
            row = self._get_connection().execute("""
                UPDATE allergies
                SET retired = TRUE, retire_reason = ?, date_retired = ?, superseded_by = ?
                WHERE allergy_id = ? AND NOT retired
            """, [reason, datetime.now(), superseded_by, allergy.allergy_id]).fetchone()

            if not row or row[0] == 0:
                raise StorageError(
                    f"Allergy {allergy.allergy_id} is not active",
                    operation="retire"
                )

            logger.debug(f"Retired allergy {allergy.allergy_id}: {reason}")
            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to retire allergy: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="retire", details={"allergy_id": allergy.allergy_id}),
                error_type="StorageError"
            )

    def save_allergy_status(self, patient_id: str, status: AllergyStatus) -> Result[None]:
        """Upsert the patient's allergy status tag."""
        try:
            self._ensure_schema()
            self._get_connection().execute(
                "INSERT OR REPLACE INTO patient_allergy_status (patient_id, allergy_status, date_changed) "
                "VALUES (?, ?, ?)",
                [patient_id, AllergyStatus(status).value, datetime.now()]
            )
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to save allergy status: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="save_allergy_status", details={"patient_id": patient_id}),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def log_audit_event(
        self,
        event_type: str,
        record_id: Optional[str],
        details: Optional[dict] = None
    ) -> Result[str]:
        """Log an audit trail event.

        Parameters:
            event_type: Type of event (e.g., 'ALLERGIES_RECONCILED')
            record_id: Identifier of the affected record (patient_id for saves)
            details: Additional event metadata

        Returns:
            Result[str]: Audit event identifier or error
        """
        try:
            self._ensure_schema()
            audit_id = str(uuid.uuid4())

            severity = "WARNING" if event_type.endswith("_FAILED") else "INFO"

            self._get_connection().execute("""
                INSERT INTO audit_log (
                    audit_id, event_type, event_timestamp, record_id, details, severity
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, [
                audit_id,
                event_type,
                datetime.now(),
                record_id,
                json.dumps(details) if details else None,
                severity,
            ])

            logger.debug(f"Logged audit event: {event_type} (ID: {audit_id})")
            return Result.success_result(audit_id)

        except Exception as e:
            error_msg = f"Failed to log audit event: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="log_audit_event"),
                error_type="StorageError"
            )

    def flush_change_logs(self, change_logs: list[dict]) -> Result[int]:
        """Persist buffered change audit entries.

        Parameters:
            change_logs: Change log dictionaries from ChangeAuditLogger

        Returns:
            Result[int]: Number of entries persisted or error
        """
        if not change_logs:
            return Result.success_result(0)

        try:
            self._ensure_schema()
            self._get_connection().executemany("""
                INSERT INTO change_audit_log (
                    change_id, table_name, record_id, field_name, old_value, new_value,
                    change_type, changed_at, reconciliation_id, changed_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                [
                    entry.get('change_id', str(uuid.uuid4())),
                    entry.get('table_name'),
                    entry.get('record_id'),
                    entry.get('field_name'),
                    entry.get('old_value'),
                    entry.get('new_value'),
                    entry.get('change_type'),
                    entry.get('changed_at', datetime.now()),
                    entry.get('reconciliation_id'),
                    entry.get('changed_by'),
                ]
                for entry in change_logs
            ])

            count = len(change_logs)
            logger.info(f"Flushed {count} change logs to database")
            return Result.success_result(count)

        except Exception as e:
            error_msg = f"Failed to flush change logs: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="flush_change_logs"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Vocabulary
    # ------------------------------------------------------------------

    def register_concept(self, concept: Concept) -> Result[None]:
        """Add or replace a vocabulary entry."""
        try:
            self._ensure_schema()
            self._get_connection().execute(
                "INSERT OR REPLACE INTO concepts (uuid, concept_id, name) VALUES (?, ?, ?)",
                [concept.uuid, concept.concept_id, concept.name]
            )
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to register concept: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="register_concept", details={"uuid": concept.uuid}),
                error_type="StorageError"
            )

    def get_concept_by_uuid(self, uuid: str) -> Optional[Concept]:
        self._ensure_schema()
        row = self._get_connection().execute(
            "SELECT uuid, concept_id, name FROM concepts WHERE uuid = ?",
            [uuid]
        ).fetchone()
        if row is None:
            return None
        return Concept(uuid=row[0], concept_id=row[1], name=row[2])

    def get_other_non_coded_concept(self) -> Concept:
        concept = self.get_concept_by_uuid(self.other_non_coded_uuid)
        if concept is None:
            raise VocabularyError(
                "The 'other non-coded' concept is not present in the vocabulary",
                concept_uuid=self.other_non_coded_uuid
            )
        return concept

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")
