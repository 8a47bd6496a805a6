# src/infrastructure/repositories/member_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Member


class MemberRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, member_id: str) -> Member | None:
        stmt = select(Member).where(Member.id == member_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_external_id(self, external_id: str) -> Member | None:
        stmt = select(Member).where(Member.external_id == external_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_email(self, email: str) -> Member | None:
        stmt = select(Member).where(Member.email == email)
        return self.db.execute(stmt).scalar_one_or_none()

    def create(
        self,
        email: str,
        external_id: str | None = None,
        first_name: str = "",
        last_name: str = "",
        phone: str | None = None,
    ) -> Member:
        member = Member(
            email=email,
            external_id=external_id,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        self.db.add(member)
        return member
