from datetime import datetime, timezone

from src.domain.state_machine import EventStatus
from src.infrastructure.config import AppConfig
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import build_engine, build_session_factory, session_scope
from src.infrastructure.repositories.event_repository import EventRepository


EVENT_DEFS = [
    {
        "slug": "cena-tullpukuna",
        "title": "Cena a Tullpukuna",
        "starts_at": datetime(2026, 2, 12, 18, 30, tzinfo=timezone.utc),
        "location_name": "Ristorante Tullpukuna",
        "capacity": 30,
        "price_cents": 7000,
        "status": EventStatus.PUBLISHED,
    },
]


def seed_events(db) -> None:
    repo = EventRepository(db)
    for item in EVENT_DEFS:
        fields = dict(item)
        slug = fields.pop("slug")
        repo.create_or_update(slug, **fields)


def main() -> None:
    config = AppConfig.from_env()
    engine = build_engine(config.database_url)
    Base.metadata.create_all(bind=engine)

    with session_scope(build_session_factory(engine)) as db:
        seed_events(db)

    print("Seed complete: events upserted.")


if __name__ == "__main__":
    main()
