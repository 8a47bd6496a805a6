# src/application/member_resolver.py

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.domain.exceptions import EmailAlreadyInUse
from src.domain.handoff import HandoffClaims
from src.domain.identity import (
    build_placeholder_email,
    is_placeholder_email,
    normalize_email,
)
from src.infrastructure.db.models import Member
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.member_repository import MemberRepository


logger = logging.getLogger(__name__)


class MemberResolver:
    """
    Maps verified handoff claims onto exactly one local member.

    Lookup is always by external id, never by email, so a person who
    logs in first without an email and later with one stays a single
    record. Email conflicts are an expected outcome: the external id
    is still persisted and the existing email is kept.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def resolve(self, claims: HandoffClaims) -> Member:
        with session_scope(self.session_factory) as db:
            repo = MemberRepository(db)
            external_id = claims.external_id
            email = normalize_email(claims.email)

            member = repo.get_by_external_id(external_id)
            if member is not None:
                member.external_id = external_id
                db.flush()
                if email and member.email != email and is_placeholder_email(member.email):
                    self._adopt_email(db, repo, member, email)
                return member

            return self._create(db, repo, claims, external_id, email)

    def _adopt_email(
        self,
        db: Session,
        repo: MemberRepository,
        member: Member,
        email: str,
    ) -> bool:
        owner = repo.get_by_email(email)
        if owner is not None and owner.id != member.id:
            self._log_email_conflict(member.id)
            return False

        try:
            with db.begin_nested():
                member.email = email
        except IntegrityError:
            # Another member took the address between the check and the write.
            db.refresh(member)
            self._log_email_conflict(member.id)
            return False
        return True

    def _create(
        self,
        db: Session,
        repo: MemberRepository,
        claims: HandoffClaims,
        external_id: str,
        email: str | None,
    ) -> Member:
        if email:
            owner = repo.get_by_email(email)
            if owner is not None and owner.external_id is None:
                # Registered before the federation handoff existed: link it.
                owner.external_id = external_id
                logger.info("Linked existing member to external id. member_id=%s", owner.id)
                return owner
            if owner is not None:
                self._log_email_conflict(owner.id)
                email = None

        try:
            with db.begin_nested():
                member = repo.create(
                    email=email or build_placeholder_email(claims.stable_id),
                    external_id=external_id,
                )
        except IntegrityError:
            # A concurrent first login for the same person won the insert.
            existing = repo.get_by_external_id(external_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Created member. member_id=%s placeholder_email=%s",
            member.id,
            is_placeholder_email(member.email),
        )
        return member

    @staticmethod
    def _log_email_conflict(member_id: str) -> None:
        logger.info(
            "Email not adopted: %s. member_id=%s",
            EmailAlreadyInUse.code,
            member_id,
        )
