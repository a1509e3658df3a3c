"""Main entry point for the Allergy Ledger.

This module wires the configured storage adapter, the reconciliation engine
and the audit logger into an AllergyService, and provides a minimal
argparse entry point for applying a candidate allergy list from a JSON file.
The richer operator interface lives in src/cli.py.

Security Impact:
    - Configuration is loaded via the configuration manager
    - Every save is recorded in the change audit trail

Architecture:
    - Follows Hexagonal Architecture principles
    - Storage adapter is configured via configuration manager
    - Domain services receive their collaborators through ports
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from src.infrastructure.settings import settings
from src.infrastructure.config_manager import get_database_config
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.audit.change_audit_logger import ChangeAuditLogger
from src.adapters.storage import DuckDBAdapter
from src.domain.allergies import Allergies
from src.domain.allergy import Allergen, Allergy
from src.domain.enums import AllergyStatus
from src.domain.services.allergy_service import AllergyService
from src.domain.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


def create_storage_adapter() -> DuckDBAdapter:
    """Create storage adapter based on configuration.

    Returns:
        DuckDBAdapter: Configured storage adapter instance

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = get_database_config()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        return DuckDBAdapter(db_config=db_config, other_non_coded_uuid=settings.other_non_coded_uuid)
    raise ValueError(f"Unsupported database type: {db_config.db_type}")


def create_allergy_service(storage: Optional[DuckDBAdapter] = None) -> AllergyService:
    """Build an AllergyService from settings.

    Parameters:
        storage: Storage adapter to use (created from configuration when omitted)

    Returns:
        AllergyService: Service whose storage and vocabulary are the same adapter
    """
    Allergen.set_other_non_coded_uuid(settings.other_non_coded_uuid)
    storage = storage or create_storage_adapter()

    schema_result = storage.initialize_schema()
    if not schema_result.is_success():
        raise RuntimeError(f"Schema initialization failed: {schema_result.error}")

    return AllergyService(
        storage=storage,
        vocabulary=storage,
        engine=ReconciliationEngine(
            retire_reason_edited=settings.retire_reason_edited,
            retire_reason_removed=settings.retire_reason_removed
        ),
        audit_logger=ChangeAuditLogger(),
        changed_by=settings.changed_by
    )


def load_candidate(path: Path, patient_id: str) -> Allergies:
    """Parse a candidate allergy list from a JSON file.

    Accepted shapes:
        - a list of allergy objects
        - {"allergies": [...], "status": "NO_KNOWN_ALLERGIES" | "UNKNOWN"}

    Raises:
        ValueError: If the file is not valid JSON or has an unexpected shape
        pydantic.ValidationError: If an allergy object is invalid
    """
    try:
        data: Any = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in candidate file: {str(e)}")

    status = None
    if isinstance(data, dict):
        status = data.get("status")
        data = data.get("allergies", [])
    if not isinstance(data, list):
        raise ValueError("Candidate file must contain a list of allergies")

    candidate = Allergies(
        [Allergy.model_validate(item) for item in data],
        patient_id=patient_id,
        explicit_status=AllergyStatus(str(status).upper()) if status else None
    )
    return candidate


def main():
    """Main entry point for command-line execution."""
    parser = argparse.ArgumentParser(
        description="Allergy Ledger - reconcile a patient's allergy list",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Save a candidate list for patient 2
  python -m src.main 2 candidate.json

  # Use a specific database file
  AL_DB_PATH=ledger.duckdb python -m src.main 2 candidate.json
        """
    )

    parser.add_argument("patient_id", help="Patient identifier")
    parser.add_argument("candidate", help="Candidate allergy list (JSON)")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    setup_logging(use_json=settings.log_json, log_level="DEBUG" if args.verbose else settings.log_level)

    candidate_path = Path(args.candidate)
    if not candidate_path.exists():
        logger.error(f"Candidate file not found: {args.candidate}")
        sys.exit(1)

    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Database path: {settings.get_db_path()}")

    try:
        storage = create_storage_adapter()
    except Exception as e:
        logger.error(f"Failed to create storage adapter: {str(e)}")
        sys.exit(1)

    try:
        service = create_allergy_service(storage)
        candidate = load_candidate(candidate_path, args.patient_id)
        result = service.set_allergies(args.patient_id, candidate)

        logger.info("=" * 60)
        logger.info("Reconciliation Summary:")
        logger.info(f"  Unchanged: {result.allergies_unchanged}")
        logger.info(f"  Created: {result.allergies_created}")
        logger.info(f"  Retired: {result.allergies_retired} ({result.allergies_edited} edited)")
        logger.info(f"  Status: {result.status.value}")
        logger.info(f"  Reconciliation ID: {result.reconciliation_id}")
        logger.info("=" * 60)
        sys.exit(0)

    except Exception as e:
        logger.error(f"Reconciliation failed: {str(e)}", exc_info=True)
        sys.exit(1)

    finally:
        try:
            storage.close()
        except Exception as e:
            logger.warning(f"Error closing storage connection: {str(e)}")


if __name__ == "__main__":
    main()
