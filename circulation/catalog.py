"""
Book Catalog

Owns the copy counts of every title and the rule that ties them together:

    available = max(0, total - borrowed)

DESIGN DECISION: borrowed_copies is always re-derived from the store's
count of ACTIVE transactions before a decision is made, and available is
always computed from (total, borrowed). Neither is trusted from a cached
record.

The catalog plans mutations (returns the records to write) and leaves
locking, committing and cache maintenance to the coordinator.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from circulation.errors import CapacityError, ConflictError, NotFoundError
from circulation.ids import id_sort_key
from circulation.models.circulation import Book, BookSpec
from circulation.services.storage import CirculationStoreInterface
from circulation.validation import BookValidator


# Relevance weights for search()
TITLE_EXACT = 100
TITLE_PREFIX = 80
TITLE_CONTAINS = 60
AUTHOR_CONTAINS = 40
GENRE_CONTAINS = 20
ISBN_CONTAINS = 10


def relevance(book: Book, term: str) -> int:
    """
    Score a book against a lowercase search term. 0 means no match.

    A title contributes its best match only; other fields add up.
    """
    title = book.title.lower()
    score = 0
    if title == term:
        score += TITLE_EXACT
    elif title.startswith(term):
        score += TITLE_PREFIX
    elif term in title:
        score += TITLE_CONTAINS

    if term in book.author.lower():
        score += AUTHOR_CONTAINS
    if term in book.genre.lower():
        score += GENRE_CONTAINS
    if term in book.isbn.lower():
        score += ISBN_CONTAINS
    return score


class BookCatalog:
    """Catalog rules over the authoritative store."""

    def __init__(
        self,
        store: CirculationStoreInterface,
        validator: Optional[BookValidator] = None,
    ):
        self._store = store
        self._validator = validator or BookValidator()

    async def require_book(self, book_id: str, include_inactive: bool = False) -> Book:
        book = await self._store.get_book(book_id)
        if book is None or (not book.is_active and not include_inactive):
            raise NotFoundError(f"Book not found: {book_id}", {"book_id": book_id})
        return book

    async def borrowed_count(self, book_id: str) -> int:
        """Copies out on loan, from the store's ACTIVE transactions."""
        return await self._store.count_active_loans(book_id=book_id)

    # =========================================================================
    # MUTATION PLANNING
    # =========================================================================

    def plan_add(self, spec: BookSpec, now: datetime, new_id: Callable[[], str]) -> Book:
        """
        New book with every copy on the shelf.

        new_id is only called once the input has passed validation.
        """
        self._validator.ensure_valid(spec, now, creating=True)
        return Book(
            id=new_id(),
            title=spec.title,
            author=spec.author,
            isbn=spec.isbn,
            genre=spec.genre,
            publisher=spec.publisher,
            publication_year=spec.publication_year,
            description=spec.description,
            total_copies=spec.total_copies,
            borrowed_copies=0,
            is_active=True,
            created_at=now,
        )

    async def plan_update(self, book_id: str, spec: BookSpec, now: datetime) -> Book:
        """
        Full replace of the descriptive fields and the total.

        Raises:
            NotFoundError: No active book with this id
            ValidationError: Empty required fields or a negative total
            CapacityError: The new total is below the copies on loan
        """
        existing = await self.require_book(book_id)
        self._validator.ensure_valid(spec, now, creating=False)

        borrowed = await self.borrowed_count(book_id)
        if spec.total_copies < borrowed:
            raise CapacityError(
                f"Cannot set total copies to {spec.total_copies}: "
                f"{borrowed} copies are on loan",
                {"book_id": book_id, "total_copies": spec.total_copies, "borrowed_copies": borrowed},
            )

        return Book(
            id=existing.id,
            title=spec.title,
            author=spec.author,
            isbn=spec.isbn,
            genre=spec.genre,
            publisher=spec.publisher,
            publication_year=spec.publication_year,
            description=spec.description,
            total_copies=spec.total_copies,
            borrowed_copies=borrowed,
            is_active=existing.is_active,
            created_at=existing.created_at,
        )

    async def plan_delete(self, book_id: str) -> Book:
        """
        Soft delete.

        Raises:
            ConflictError: Copies are still on loan
        """
        existing = await self.require_book(book_id)
        borrowed = await self.borrowed_count(book_id)
        if borrowed > 0:
            raise ConflictError(
                f"Cannot delete book {book_id}: {borrowed} copies are on loan",
                {"book_id": book_id, "borrowed_copies": borrowed},
            )
        return existing.model_copy(update={"is_active": False, "borrowed_copies": 0})

    async def reconcile(self, book_id: str) -> Optional[Book]:
        """
        The stored book with borrowed_copies re-derived from the store.

        Returns None if the book is gone.
        """
        book = await self._store.get_book(book_id)
        if book is None:
            return None
        borrowed = await self.borrowed_count(book_id)
        if borrowed == book.borrowed_copies:
            return book
        return book.model_copy(update={"borrowed_copies": borrowed})

    # =========================================================================
    # READS (over cached records)
    # =========================================================================

    @staticmethod
    def search(books: Iterable[Book], term: Optional[str]) -> list[Book]:
        """
        Case-insensitive match over title, author, genre and isbn.

        Blank term returns every active book. Ordered by relevance, then
        by id ascending.
        """
        active = [book for book in books if book.is_active]
        needle = (term or "").strip().lower()
        if not needle:
            return sorted(active, key=lambda book: id_sort_key(book.id))

        scored = [(relevance(book, needle), book) for book in active]
        matches = [(score, book) for score, book in scored if score > 0]
        matches.sort(key=lambda pair: (-pair[0], id_sort_key(pair[1].id)))
        return [book for _, book in matches]

    @staticmethod
    def available(books: Iterable[Book]) -> list[Book]:
        """Active books with at least one copy on the shelf."""
        return sorted(
            (book for book in books if book.is_active and book.available_copies > 0),
            key=lambda book: id_sort_key(book.id),
        )
