"""
Member Registry

Owns accounts, roles and borrowing capacity.

DESIGN DECISION: active_loan_count always asks the store. A capacity check
against a cached object graph can be stale by the time the loan is
written; the store's count of ACTIVE transactions cannot.
"""

from datetime import datetime
from typing import Callable, Optional

from circulation.errors import (
    AuthError,
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from circulation.models.circulation import (
    DEFAULT_MEMBER_CAPACITY,
    CapacityInfo,
    Member,
    MemberRole,
    MemberSpec,
    ValidationIssue,
)
from circulation.services.storage import CirculationStoreInterface
from circulation.validation import MemberValidator, validate_capacity


class MemberRegistry:
    """Registry rules over the authoritative store."""

    def __init__(
        self,
        store: CirculationStoreInterface,
        validator: Optional[MemberValidator] = None,
    ):
        self._store = store
        self._validator = validator or MemberValidator()

    async def require_member(self, member_id: str, include_inactive: bool = False) -> Member:
        member = await self._store.get_member(member_id)
        if member is None or (not member.is_active and not include_inactive):
            raise NotFoundError(f"Member not found: {member_id}", {"member_id": member_id})
        return member

    async def get_by_username(self, username: str) -> Optional[Member]:
        return await self._store.get_member_by_username(username.strip())

    async def authenticate(self, username: str, password: str) -> Member:
        """
        Exact match on stored credentials for an active account.

        Raises:
            AuthError: Unknown username, wrong password, or inactive account
        """
        member = await self.get_by_username(username)
        if member is None or not member.is_active or member.password != password:
            raise AuthError("Invalid username or password", {"username": username})
        return member

    # =========================================================================
    # CAPACITY
    # =========================================================================

    async def active_loan_count(self, member_id: str) -> int:
        return await self._store.count_active_loans(member_id=member_id)

    async def remaining_slots(self, member_id: str) -> int:
        member = await self.require_member(member_id, include_inactive=True)
        if not member.is_member:
            return 0
        return max(0, member.book_capacity - await self.active_loan_count(member_id))

    async def can_borrow(self, member_id: str) -> bool:
        member = await self._store.get_member(member_id)
        if member is None or not member.is_active or not member.is_member:
            return False
        return await self.remaining_slots(member_id) > 0

    async def capacity_info(self, member_id: str) -> CapacityInfo:
        member = await self.require_member(member_id, include_inactive=True)
        active = await self.active_loan_count(member_id)
        return CapacityInfo(
            member_id=member_id,
            capacity=member.book_capacity,
            active_loans=active,
            remaining=max(0, member.book_capacity - active) if member.is_member else 0,
        )

    async def check_can_borrow(self, member_id: str) -> Member:
        """
        The borrowing member, if allowed to take another book.

        Raises:
            NotFoundError: Unknown member
            ValidationError: Inactive account or a staff role
            CapacityError: Every slot is taken
        """
        member = await self.require_member(member_id, include_inactive=True)
        if not member.is_active:
            raise ValidationError(
                f"Member {member_id} is inactive",
                issues=[ValidationIssue(
                    field="member_id",
                    issue_type="inactive",
                    message="Inactive accounts cannot borrow",
                    severity="error",
                )],
            )
        if not member.is_member:
            raise ValidationError(
                f"Only MEMBER accounts can borrow, {member_id} is {member.role.value}",
                issues=[ValidationIssue(
                    field="role",
                    issue_type="invalid_value",
                    message="Only MEMBER accounts can borrow",
                    severity="error",
                )],
            )

        active = await self.active_loan_count(member_id)
        if active >= member.book_capacity:
            raise CapacityError(
                f"Member {member_id} has reached the borrowing limit "
                f"({active} of {member.book_capacity})",
                {"member_id": member_id, "active_loans": active, "capacity": member.book_capacity},
            )
        return member

    # =========================================================================
    # MUTATION PLANNING
    # =========================================================================

    async def plan_add(
        self,
        spec: MemberSpec,
        now: datetime,
        new_id: Callable[[], str],
    ) -> Member:
        """
        New account. MEMBERs get the default capacity unless one is given.

        Raises:
            ValidationError: Missing fields or a negative capacity
            ConflictError: Username already taken (active or not)
        """
        self._validator.ensure_valid(spec, creating=True)
        await self._ensure_username_free(spec.username, None)

        capacity = spec.book_capacity
        if capacity is None:
            capacity = DEFAULT_MEMBER_CAPACITY
        return Member(
            id=new_id(),
            username=spec.username,
            password=spec.password,
            full_name=spec.full_name,
            email=spec.email,
            role=spec.role,
            book_capacity=capacity,
            is_active=True,
            created_at=now,
        )

    async def plan_update(self, member_id: str, spec: MemberSpec) -> Member:
        """
        Profile replace. Capacity is kept unless the role changes.

        A member holding loans cannot be moved to a staff role, since staff
        capacity is 0.
        """
        existing = await self.require_member(member_id)
        self._validator.ensure_valid(spec, creating=False)
        await self._ensure_username_free(spec.username, member_id)

        if spec.role == existing.role:
            capacity = existing.book_capacity
        elif spec.role == MemberRole.MEMBER:
            capacity = DEFAULT_MEMBER_CAPACITY
        else:
            active = await self.active_loan_count(member_id)
            if active > 0:
                raise CapacityError(
                    f"Member {member_id} holds {active} loans and cannot become "
                    f"{spec.role.value}",
                    {"member_id": member_id, "active_loans": active},
                )
            capacity = 0

        return Member(
            id=existing.id,
            username=spec.username,
            password=spec.password or existing.password,
            full_name=spec.full_name,
            email=spec.email,
            role=spec.role,
            book_capacity=capacity,
            is_active=existing.is_active,
            created_at=existing.created_at,
        )

    async def plan_capacity_change(self, member_id: str, new_capacity: int) -> Member:
        """
        Raises:
            ValidationError: Negative capacity, or the account is not a MEMBER
            CapacityError: New capacity is below the member's active loans
        """
        validate_capacity(new_capacity)
        member = await self.require_member(member_id)
        if not member.is_member:
            raise ValidationError(
                f"Capacity applies only to MEMBER accounts, {member_id} is {member.role.value}",
                issues=[ValidationIssue(
                    field="role",
                    issue_type="invalid_value",
                    message="Capacity applies only to MEMBER accounts",
                    severity="error",
                )],
            )

        active = await self.active_loan_count(member_id)
        if new_capacity < active:
            raise CapacityError(
                f"Cannot set capacity to {new_capacity}: member holds {active} active loans",
                {"member_id": member_id, "active_loans": active, "capacity": new_capacity},
            )
        return member.model_copy(update={"book_capacity": new_capacity})

    async def plan_delete(self, member_id: str) -> Member:
        """
        Soft delete.

        Raises:
            ConflictError: The member still holds active loans
        """
        member = await self.require_member(member_id)
        active = await self.active_loan_count(member_id)
        if active > 0:
            raise ConflictError(
                f"Cannot delete member {member_id}: {active} active loans",
                {"member_id": member_id, "active_loans": active},
            )
        return member.model_copy(update={"is_active": False})

    async def _ensure_username_free(self, username: str, member_id: Optional[str]) -> None:
        holder = await self._store.get_member_by_username(username)
        if holder is not None and holder.id != member_id:
            raise ConflictError(
                f"Username already taken: {username}",
                {"username": username},
            )
