"""
Two-Stage Validation for Catalog and Registry Input

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (title, author, isbn; username, password)
- Range checks (copy counts, capacities)

STAGE 2 - SEMANTIC VALIDATION:
- Plausibility checks (publication year, ISBN shape, email shape)
- These produce warnings only; they never block a write

Stage 2 only runs when stage 1 passes. Errors stop the mutation with a
ValidationError carrying every issue; warnings are reported alongside.

IMPORTANT: Validation NEVER silently fixes input. Whitespace stripping is
done by the models; everything else is reported, not corrected.
"""

import re
from datetime import datetime
from typing import Optional

from circulation.errors import ValidationError
from circulation.models.circulation import (
    BookSpec,
    MemberRole,
    MemberSpec,
    ValidationIssue,
    ValidationResult,
)


_ISBN_CHARS = re.compile(r"^[0-9Xx\- ]+$")
_EMAIL_SHAPE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

EARLIEST_PUBLICATION_YEAR = 1450


def _missing(field: str, label: str) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type="missing",
        message=f"{label} is required",
        severity="error",
        suggested_fix=f"Enter a {label.lower()}",
    )


class BookValidator:
    """
    Validates BookSpec input for add and full-replace update.

    New books need at least one copy; an update may set the total to zero
    as long as no copy is out on loan (checked by the catalog).
    """

    def _validate_schema(
        self,
        spec: BookSpec,
        creating: bool,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if not spec.title:
            issues.append(_missing("title", "Title"))
        if not spec.author:
            issues.append(_missing("author", "Author"))
        if not spec.isbn:
            issues.append(_missing("isbn", "ISBN"))

        if creating and spec.total_copies <= 0:
            issues.append(ValidationIssue(
                field="total_copies",
                issue_type="invalid_value",
                message="A new book needs at least one copy",
                severity="error",
                suggested_fix="Set total copies to 1 or more",
            ))
        elif spec.total_copies < 0:
            issues.append(ValidationIssue(
                field="total_copies",
                issue_type="invalid_value",
                message="Total copies cannot be negative",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        spec: BookSpec,
        now: datetime,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if spec.publication_year is not None:
            if not EARLIEST_PUBLICATION_YEAR <= spec.publication_year <= now.year + 1:
                issues.append(ValidationIssue(
                    field="publication_year",
                    issue_type="suspicious_value",
                    message=f"Publication year {spec.publication_year} looks unlikely",
                    severity="warning",
                    suggested_fix="Please verify the year",
                ))

        if spec.isbn and not _ISBN_CHARS.match(spec.isbn):
            issues.append(ValidationIssue(
                field="isbn",
                issue_type="suspicious_value",
                message="ISBN contains characters other than digits, X and hyphens",
                severity="warning",
                suggested_fix="Please verify the ISBN",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        spec: BookSpec,
        now: datetime,
        creating: bool = True,
    ) -> ValidationResult:
        """Run both stages and collect every issue."""
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(spec, creating)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(spec, now)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            subject="book",
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(
        self,
        spec: BookSpec,
        now: datetime,
        creating: bool = True,
    ) -> ValidationResult:
        """Validate and raise ValidationError on any error-level issue."""
        result = self.validate(spec, now, creating=creating)
        if not result.is_valid:
            raise ValidationError(
                summarize(result),
                issues=result.issues,
            )
        return result


class MemberValidator:
    """Validates MemberSpec input for registration and profile update."""

    def _validate_schema(
        self,
        spec: MemberSpec,
        creating: bool,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if not spec.username:
            issues.append(_missing("username", "Username"))
        elif any(c.isspace() for c in spec.username):
            issues.append(ValidationIssue(
                field="username",
                issue_type="invalid_format",
                message="Username cannot contain spaces",
                severity="error",
            ))

        # On update an empty password keeps the current one.
        if creating and not spec.password:
            issues.append(_missing("password", "Password"))

        if not spec.full_name:
            issues.append(_missing("full_name", "Full name"))

        if spec.book_capacity is not None and spec.book_capacity < 0:
            issues.append(ValidationIssue(
                field="book_capacity",
                issue_type="invalid_value",
                message="Book capacity cannot be negative",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        spec: MemberSpec,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if spec.email and not _EMAIL_SHAPE.match(spec.email):
            issues.append(ValidationIssue(
                field="email",
                issue_type="invalid_format",
                message=f"Email address '{spec.email}' looks malformed",
                severity="warning",
                suggested_fix="Please verify the email address",
            ))

        if spec.role != MemberRole.MEMBER and spec.book_capacity:
            issues.append(ValidationIssue(
                field="book_capacity",
                issue_type="ignored_value",
                message="Staff accounts do not borrow; capacity will be 0",
                severity="warning",
            ))

        return True, issues

    def validate(
        self,
        spec: MemberSpec,
        creating: bool = True,
    ) -> ValidationResult:
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(spec, creating)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(spec)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            subject="member",
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(
        self,
        spec: MemberSpec,
        creating: bool = True,
    ) -> ValidationResult:
        result = self.validate(spec, creating=creating)
        if not result.is_valid:
            raise ValidationError(summarize(result), issues=result.issues)
        return result


def validate_capacity(new_capacity: Optional[int]) -> None:
    """Reject a capacity that is missing or negative."""
    if new_capacity is None or new_capacity < 0:
        issue = ValidationIssue(
            field="book_capacity",
            issue_type="invalid_value",
            message="Book capacity must be zero or more",
            severity="error",
        )
        raise ValidationError(issue.message, issues=[issue])


def summarize(result: ValidationResult) -> str:
    """
    One-line summary of a validation result for the desk UI.

    Errors first, then warnings.
    """
    if result.is_valid and not result.warnings:
        return f"All {result.subject} checks passed"

    parts = [issue.message for issue in result.errors]
    parts.extend(result.warnings)
    prefix = "Invalid" if result.errors else "Check"
    return f"{prefix} {result.subject}: " + "; ".join(parts)
