# blockserved/services/case_service.py
"""
Case records for process servers.

Cases are created when a server prepares one or first serves a notice for
it, move through draft -> served -> closed, and are never hard-deleted.
"""
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from blockserved.core.logger import logger
from blockserved.db.models import Case, CaseStatus
from blockserved.utils.exceptions import NotFoundError, StorageError, ValidationError
from blockserved.utils.validators import validate_case_number, validate_tron_address


class CaseService:
    """
    Service layer for case-related business logic.
    """

    @staticmethod
    def get_case(db: Session, case_number: str, server_address: str) -> Optional[Case]:
        return (
            db.query(Case)
            .filter(
                Case.case_number == case_number,
                Case.server_key == server_address.strip().lower(),
            )
            .first()
        )

    @staticmethod
    def ensure_case(
        db: Session,
        case_number: str,
        server_address: str,
        status: Optional[CaseStatus] = None,
    ) -> Case:
        """
        Return the case row, adding it to the session if missing.
        Does not commit; the caller's transaction owns the write.
        """
        case = CaseService.get_case(db, case_number, server_address)
        if case is None:
            case = Case(
                case_number=case_number,
                server_address=server_address,
                server_key=server_address.strip().lower(),
                status=status or CaseStatus.draft,
            )
            db.add(case)
        elif status is not None and case.status != CaseStatus.closed:
            case.status = status
        return case

    @staticmethod
    def create_case(
        db: Session,
        case_number: str,
        server_address: str,
        description: Optional[str] = None,
    ) -> Case:
        """
        Create a draft case. Returns the existing row when the server already
        has a case with this number.
        """
        case_number = validate_case_number(case_number)
        server_address = validate_tron_address(server_address, "serverAddress")

        try:
            case = CaseService.ensure_case(db, case_number, server_address)
            if description is not None:
                case.description = description
            db.commit()
            db.refresh(case)
            logger.info(f"Case ready: {case_number} for {server_address}")
            return case
        except IntegrityError:
            db.rollback()
            case = CaseService.get_case(db, case_number, server_address)
            if case is None:
                raise StorageError(f"case insert conflict for {case_number}")
            return case
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to create case {case_number}: {str(e)}")

    @staticmethod
    def list_cases(db: Session, server_address: str, skip: int = 0, limit: int = 50) -> List[Case]:
        return (
            db.query(Case)
            .filter(Case.server_key == server_address.strip().lower())
            .order_by(Case.updated_at.desc(), Case.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @staticmethod
    def update_status(db: Session, case_number: str, server_address: str, status: str) -> Case:
        try:
            new_status = CaseStatus(status)
        except ValueError:
            raise ValidationError(
                f"Invalid case status '{status}'. Expected one of: "
                + ", ".join(s.value for s in CaseStatus)
            )

        case = CaseService.get_case(db, case_number, server_address)
        if case is None:
            raise NotFoundError(f"Case {case_number} not found")

        try:
            case.status = new_status
            db.commit()
            db.refresh(case)
            logger.info(f"Case {case_number} status -> {new_status.value}")
            return case
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update case {case_number}: {str(e)}")


def case_to_dict(case: Case) -> dict:
    return {
        "case_number": case.case_number,
        "server_address": case.server_address,
        "status": case.status.value if case.status else None,
        "description": case.description,
        "created_at": case.created_at.isoformat() if case.created_at else None,
        "updated_at": case.updated_at.isoformat() if case.updated_at else None,
    }
