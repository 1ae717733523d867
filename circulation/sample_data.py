"""
Demo data for a fresh installation.

An empty store is seeded with staff accounts, two members, four titles and
three loans (one of them overdue) so every desk screen has something to
show. Seeding is one atomic batch; a store that holds any book or member is
left alone.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from circulation.audit import AuditLogger
from circulation.clock import Clock
from circulation.ledger import LOAN_PERIOD_DAYS
from circulation.models.circulation import (
    Book,
    Member,
    MemberRole,
    Transaction,
    TransactionStatus,
)
from circulation.services.storage import CirculationStoreInterface, WriteBatch


logger = structlog.get_logger(__name__)


SAMPLE_MEMBERS = [
    # id, username, password, full name, email, role, capacity
    ("U001", "admin", "admin123", "System Administrator", "admin@library.com", MemberRole.ADMIN, 0),
    ("U002", "librarian", "lib123", "John Librarian", "librarian@library.com", MemberRole.LIBRARIAN, 0),
    ("U003", "member1", "mem123", "Alice Member", "alice@email.com", MemberRole.MEMBER, 5),
    ("U004", "member2", "mem123", "Bob Member", "bob@email.com", MemberRole.MEMBER, 5),
]

SAMPLE_BOOKS = [
    # id, title, author, isbn, genre, copies, description, year, publisher
    ("B001", "Java Programming", "John Smith", "978-0-123456-78-9", "Programming", 3,
     "Comprehensive guide to Java programming", 2023, "Tech Books"),
    ("B002", "Data Structures", "Jane Doe", "978-0-987654-32-1", "Computer Science", 2,
     "Fundamental data structures and algorithms", 2022, "Academic Press"),
    ("B003", "Web Development", "Mike Johnson", "978-0-555555-55-5", "Programming", 4,
     "Modern web development techniques", 2024, "Web Publishers"),
    ("B004", "Database Design", "Sarah Wilson", "978-0-111111-11-1", "Computer Science", 2,
     "Database design principles and practices", 2021, "Data Books"),
]

SAMPLE_LOANS = [
    # id, book, member, borrowed this many days ago
    ("T001", "B001", "U003", 17),
    ("T002", "B002", "U003", 5),
    ("T003", "B003", "U004", 2),
]


def build_sample_batch(now: datetime) -> WriteBatch:
    """Every sample record, with book counts matching the sample loans."""
    batch = WriteBatch()

    for member_id, username, password, full_name, email, role, capacity in SAMPLE_MEMBERS:
        batch.insert(Member(
            id=member_id,
            username=username,
            password=password,
            full_name=full_name,
            email=email,
            role=role,
            book_capacity=capacity,
            created_at=now,
        ))

    on_loan: dict[str, int] = {}
    for loan_id, book_id, member_id, days_ago in SAMPLE_LOANS:
        borrowed_at = now - timedelta(days=days_ago)
        batch.insert(Transaction(
            id=loan_id,
            book_id=book_id,
            member_id=member_id,
            borrow_date=borrowed_at,
            due_date=borrowed_at + timedelta(days=LOAN_PERIOD_DAYS),
            status=TransactionStatus.ACTIVE,
            created_at=borrowed_at,
            updated_at=borrowed_at,
        ))
        on_loan[book_id] = on_loan.get(book_id, 0) + 1

    for book_id, title, author, isbn, genre, copies, description, year, publisher in SAMPLE_BOOKS:
        batch.insert(Book(
            id=book_id,
            title=title,
            author=author,
            isbn=isbn,
            genre=genre,
            total_copies=copies,
            borrowed_copies=on_loan.get(book_id, 0),
            description=description,
            publication_year=year,
            publisher=publisher,
            created_at=now,
        ))

    return batch


async def seed_sample_data(
    store: CirculationStoreInterface,
    clock: Clock,
    audit_logger: Optional[AuditLogger] = None,
) -> bool:
    """
    Seed an empty store.

    Returns:
        True if the sample data was written, False if the store already
        held data
    """
    if not await store.is_empty():
        return False

    batch = build_sample_batch(clock.now())
    await store.commit(batch)
    logger.info(
        "sample_data_seeded",
        books=len(batch.insert_books),
        members=len(batch.insert_members),
        transactions=len(batch.insert_transactions),
    )
    if audit_logger:
        await audit_logger.log_sample_data_seeded(
            books=len(batch.insert_books),
            members=len(batch.insert_members),
        )
    return True
