"""
Tests for the book catalog.
"""

from datetime import timedelta

import pytest

from circulation.catalog import BookCatalog, relevance
from circulation.errors import CapacityError, ConflictError, NotFoundError, ValidationError
from circulation.ids import IdGenerator
from circulation.models.circulation import Book, Member, Transaction


def make_book(book_id, title, author="Anon", genre="", isbn="000", total=1, active=True) -> Book:
    return Book(
        id=book_id,
        title=title,
        author=author,
        genre=genre,
        isbn=isbn,
        total_copies=total,
        is_active=active,
    )


@pytest.fixture
def catalog(store):
    return BookCatalog(store)


async def open_loan(store, clock, book_id, loan_id="T001"):
    if await store.get_member("U001") is None:
        await store.insert_member(Member(id="U001", username="alice", password="x"))
    now = clock.now()
    await store.insert_transaction(Transaction(
        id=loan_id,
        book_id=book_id,
        member_id="U001",
        borrow_date=now,
        due_date=now + timedelta(days=14),
    ))


class TestPlanAdd:
    """Adding books."""

    def test_new_book_fully_available(self, catalog, clock, book_spec):
        """Test that a new book has every copy on the shelf."""
        book = catalog.plan_add(book_spec(copies=3), clock.now(), IdGenerator("B").next)

        assert book.id == "B001"
        assert book.borrowed_copies == 0
        assert book.available_copies == 3

    def test_missing_fields_rejected(self, catalog, clock, book_spec):
        """Test that every missing field is reported at once."""
        ids = IdGenerator("B")
        with pytest.raises(ValidationError) as exc_info:
            catalog.plan_add(book_spec(title="", author=""), clock.now(), ids.next)

        fields = {issue.field for issue in exc_info.value.issues}
        assert fields == {"title", "author"}
        assert ids.last == 0

    def test_zero_copies_rejected(self, catalog, clock, book_spec):
        """Test that a new book needs at least one copy."""
        with pytest.raises(ValidationError):
            catalog.plan_add(book_spec(copies=0), clock.now(), IdGenerator("B").next)


class TestPlanUpdate:
    """Full-replace updates."""

    async def test_total_below_loans_rejected(self, catalog, store, clock, book_spec):
        """Test that the total cannot drop below copies on loan."""
        await store.insert_book(make_book("B001", "Dune", total=2))
        await open_loan(store, clock, "B001", "T001")
        await open_loan(store, clock, "B001", "T002")

        with pytest.raises(CapacityError):
            await catalog.plan_update("B001", book_spec(copies=1), clock.now())

    async def test_update_keeps_derived_borrowed(self, catalog, store, clock, book_spec):
        """Test that the updated record carries the live loan count."""
        await store.insert_book(make_book("B001", "Dune", total=2))
        await open_loan(store, clock, "B001")

        book = await catalog.plan_update("B001", book_spec("Dune Messiah", copies=4), clock.now())

        assert book.title == "Dune Messiah"
        assert book.borrowed_copies == 1
        assert book.available_copies == 3

    async def test_unknown_book(self, catalog, clock, book_spec):
        """Test that updating a missing book is NotFound."""
        with pytest.raises(NotFoundError):
            await catalog.plan_update("B404", book_spec(), clock.now())


class TestPlanDelete:
    """Soft deletes."""

    async def test_blocked_by_loans(self, catalog, store, clock):
        """Test that a book with copies out cannot be deleted."""
        await store.insert_book(make_book("B001", "Dune"))
        await open_loan(store, clock, "B001")

        with pytest.raises(ConflictError):
            await catalog.plan_delete("B001")

    async def test_soft_delete(self, catalog, store):
        """Test that delete marks the book inactive."""
        await store.insert_book(make_book("B001", "Dune"))

        book = await catalog.plan_delete("B001")

        assert book.is_active is False
        assert book.id == "B001"


class TestReconcile:
    """Re-deriving counts from the store."""

    async def test_reconcile_corrects_drift(self, catalog, store, clock):
        """Test that a stale count is replaced by the loan count."""
        await store.insert_book(make_book("B001", "Dune", total=3).model_copy(update={"borrowed_copies": 2}))
        await open_loan(store, clock, "B001")

        book = await catalog.reconcile("B001")

        assert book.borrowed_copies == 1
        assert book.available_copies == 2

    async def test_reconcile_missing(self, catalog):
        """Test that an unknown book reconciles to None."""
        assert await catalog.reconcile("B404") is None


class TestSearch:
    """Relevance-ranked search over cached books."""

    BOOKS = [
        make_book("B001", "Python Tricks", author="Dan Bader", genre="Programming"),
        make_book("B002", "Python", author="Guido", genre="Programming"),
        make_book("B003", "Learning Python", author="Mark Lutz", genre="Programming"),
        make_book("B004", "Monty Python Scripts", author="Python Troupe", genre="Comedy"),
        make_book("B005", "Snakes of the World", author="Ann Herp", genre="Python Studies"),
        make_book("B006", "Python Retired", author="Old", active=False),
        make_book("B010", "Cooking", author="Chef", isbn="PYTHON-1"),
    ]

    def test_ordering(self):
        """Test exact title, then prefix, then contains, then other fields."""
        results = BookCatalog.search(self.BOOKS, "Python")

        assert [b.id for b in results] == ["B002", "B004", "B001", "B003", "B005", "B010"]

    def test_blank_term_lists_active(self):
        """Test that a blank search returns every active book by id."""
        results = BookCatalog.search(self.BOOKS, "  ")

        assert [b.id for b in results] == ["B001", "B002", "B003", "B004", "B005", "B010"]

    def test_no_match(self):
        """Test that unmatched terms return nothing."""
        assert BookCatalog.search(self.BOOKS, "haskell") == []

    def test_relevance_scores(self):
        """Test that field scores add up."""
        assert relevance(self.BOOKS[1], "python") == 100
        assert relevance(self.BOOKS[3], "python") == 100

    def test_available_filter(self):
        """Test that only active books with a free copy are available."""
        books = [
            make_book("B001", "A", total=1).model_copy(update={"borrowed_copies": 1}),
            make_book("B002", "B", total=2).model_copy(update={"borrowed_copies": 1}),
            make_book("B003", "C", active=False),
        ]

        assert [b.id for b in BookCatalog.available(books)] == ["B002"]
