"""
Tests for the member registry.
"""

from datetime import timedelta

import pytest

from circulation.errors import (
    AuthError,
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from circulation.ids import IdGenerator
from circulation.models.circulation import Book, Member, MemberRole, Transaction
from circulation.registry import MemberRegistry


@pytest.fixture
def registry(store):
    return MemberRegistry(store)


@pytest.fixture
async def alice(store):
    member = Member(id="U001", username="alice", password="secret", full_name="Alice", book_capacity=3)
    await store.insert_member(member)
    await store.insert_book(Book(id="B001", title="Dune", author="Herbert", isbn="1", total_copies=5))
    return member


async def give_loans(store, clock, member_id, count):
    now = clock.now()
    for n in range(count):
        await store.insert_transaction(Transaction(
            id=f"T{n + 1:03d}",
            book_id="B001",
            member_id=member_id,
            borrow_date=now,
            due_date=now + timedelta(days=14),
        ))


class TestAuthenticate:
    """Login checks."""

    async def test_success(self, registry, alice):
        """Test that matching credentials return the account."""
        member = await registry.authenticate("alice", "secret")
        assert member.id == alice.id

    async def test_wrong_password(self, registry, alice):
        """Test that a wrong password is an AuthError."""
        with pytest.raises(AuthError):
            await registry.authenticate("alice", "nope")

    async def test_inactive_account(self, registry, store, alice):
        """Test that deleted accounts cannot log in."""
        await store.update_member(alice.model_copy(update={"is_active": False}))
        with pytest.raises(AuthError):
            await registry.authenticate("alice", "secret")


class TestCapacity:
    """Capacity queries and changes."""

    async def test_remaining_slots(self, registry, store, clock, alice):
        """Test that remaining slots come from active loans."""
        await give_loans(store, clock, alice.id, 2)

        info = await registry.capacity_info(alice.id)

        assert info.active_loans == 2
        assert info.remaining == 1
        assert await registry.can_borrow(alice.id)

    async def test_lower_capacity_below_loans(self, registry, store, clock, alice):
        """Test that capacity cannot drop below the loans held."""
        await give_loans(store, clock, alice.id, 2)

        with pytest.raises(CapacityError):
            await registry.plan_capacity_change(alice.id, 1)

    async def test_lower_capacity_to_loans(self, registry, store, clock, alice):
        """Test that capacity may equal the loans held."""
        await give_loans(store, clock, alice.id, 1)

        member = await registry.plan_capacity_change(alice.id, 1)

        assert member.book_capacity == 1

    async def test_negative_capacity(self, registry, alice):
        """Test that a negative capacity is a validation error."""
        with pytest.raises(ValidationError):
            await registry.plan_capacity_change(alice.id, -1)

    async def test_staff_capacity_change(self, registry, store):
        """Test that staff accounts have no capacity to change."""
        await store.insert_member(Member(id="U009", username="lib", password="x", role=MemberRole.LIBRARIAN))
        with pytest.raises(ValidationError):
            await registry.plan_capacity_change("U009", 3)

    async def test_check_can_borrow_at_limit(self, registry, store, clock, alice):
        """Test that a full member is refused with CapacityError."""
        await give_loans(store, clock, alice.id, 3)

        assert not await registry.can_borrow(alice.id)
        with pytest.raises(CapacityError):
            await registry.check_can_borrow(alice.id)


class TestPlanAdd:
    """Registration."""

    async def test_default_capacity(self, registry, clock, member_spec):
        """Test that new MEMBERs get five slots."""
        member = await registry.plan_add(member_spec("dave"), clock.now(), IdGenerator("U").next)

        assert member.id == "U001"
        assert member.book_capacity == 5

    async def test_duplicate_username(self, registry, clock, alice, member_spec):
        """Test that usernames are unique, and the id is not consumed."""
        ids = IdGenerator("U")
        with pytest.raises(ConflictError):
            await registry.plan_add(member_spec("alice"), clock.now(), ids.next)
        assert ids.last == 0

    async def test_username_with_space(self, registry, clock, member_spec):
        """Test that usernames cannot contain spaces."""
        with pytest.raises(ValidationError):
            await registry.plan_add(member_spec("bad name"), clock.now(), IdGenerator("U").next)


class TestPlanUpdate:
    """Profile updates."""

    async def test_keeps_capacity_and_password(self, registry, alice, member_spec):
        """Test that an empty password and same role keep stored values."""
        member = await registry.plan_update(
            alice.id, member_spec("alice", password="", full_name="Alice Liddell")
        )

        assert member.full_name == "Alice Liddell"
        assert member.password == "secret"
        assert member.book_capacity == 3

    async def test_member_with_loans_cannot_become_staff(
        self, registry, store, clock, alice, member_spec
    ):
        """Test that a borrower holding books keeps the MEMBER role."""
        await give_loans(store, clock, alice.id, 1)

        with pytest.raises(CapacityError):
            await registry.plan_update(alice.id, member_spec("alice", role=MemberRole.LIBRARIAN))

    async def test_rename_to_taken_username(self, registry, store, alice, member_spec):
        """Test that renaming onto another account's username is a conflict."""
        await store.insert_member(Member(id="U002", username="bob", password="x"))

        with pytest.raises(ConflictError):
            await registry.plan_update(alice.id, member_spec("bob"))


class TestPlanDelete:
    """Soft deletes."""

    async def test_blocked_by_loans(self, registry, store, clock, alice):
        """Test that a member holding loans cannot be deleted."""
        await give_loans(store, clock, alice.id, 1)

        with pytest.raises(ConflictError):
            await registry.plan_delete(alice.id)

    async def test_soft_delete(self, registry, alice):
        """Test that delete deactivates the account."""
        member = await registry.plan_delete(alice.id)
        assert member.is_active is False

    async def test_unknown_member(self, registry):
        """Test that a missing member is NotFound."""
        with pytest.raises(NotFoundError):
            await registry.plan_delete("U404")
