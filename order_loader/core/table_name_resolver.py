"""
Table Name Resolution

Validates and resolves the destination table identifier before any batch
is written. Table names end up in composed DDL/DML statements, so anything
outside the naming policy is rejected rather than escaped.
"""

import logging
import re
from typing import Dict, Mapping, Optional

from ..utils.error_handler import InvalidTableNameError

logger = logging.getLogger(__name__)


class TableNameResolver:
    """Resolve symbolic references and enforce the table naming policy"""

    MAX_LENGTH = 64

    # Hangul syllables, ASCII letters, digits and underscore; no leading digit
    NAME_PATTERN = re.compile(r"[가-힣A-Za-z_][가-힣A-Za-z0-9_]*")

    RESERVED_WORDS = frozenset(
        {
            "SELECT",
            "INSERT",
            "UPDATE",
            "DELETE",
            "DROP",
            "CREATE",
            "ALTER",
            "TRUNCATE",
            "TABLE",
            "DATABASE",
            "INDEX",
            "VIEW",
            "PROCEDURE",
            "FUNCTION",
            "TRIGGER",
            "UNION",
            "JOIN",
            "WHERE",
            "FROM",
            "INTO",
            "VALUES",
            "SET",
            "AND",
            "OR",
            "NOT",
        }
    )

    DEFAULT_REFERENCE_PREFIX = "Tables.Invoice."

    def __init__(
        self,
        default_table_name: str,
        references: Optional[Mapping[str, str]] = None,
        reference_prefix: str = DEFAULT_REFERENCE_PREFIX,
    ):
        """
        Initialize the resolver.

        Args:
            default_table_name: Table used for blank candidates and
                unresolvable references
            references: Symbolic reference key -> table name
            reference_prefix: Prefix marking a candidate as a symbolic reference

        Raises:
            InvalidTableNameError: If the default table name itself is unsafe
        """
        if not self.is_valid_table_name(default_table_name):
            raise InvalidTableNameError(
                default_table_name, "configured default table name is not allowed"
            )
        self.default_table_name = default_table_name
        self.references: Dict[str, str] = dict(references or {})
        self.reference_prefix = reference_prefix

    @classmethod
    def validation_failure(cls, table_name: Optional[str]) -> Optional[str]:
        """
        Explain why a name fails the naming policy.

        Returns:
            Reason string, or None if the name is acceptable
        """
        if not isinstance(table_name, str) or not table_name.strip():
            return "name is empty"
        if len(table_name) > cls.MAX_LENGTH:
            return f"name is longer than {cls.MAX_LENGTH} characters"
        if not cls.NAME_PATTERN.fullmatch(table_name):
            return (
                "only letters, digits and underscore are allowed, "
                "and the name may not start with a digit"
            )
        if table_name.upper() in cls.RESERVED_WORDS:
            return "name is a reserved SQL word"
        return None

    @classmethod
    def is_valid_table_name(cls, table_name: Optional[str]) -> bool:
        """Check a name against the naming policy."""
        return cls.validation_failure(table_name) is None

    def resolve(self, candidate: Optional[str] = None) -> str:
        """
        Resolve a candidate into a safe table name.

        Args:
            candidate: Table name, symbolic reference, or None/blank

        Returns:
            Table name to write into

        Raises:
            InvalidTableNameError: If the candidate fails the naming policy
        """
        if candidate is None or not candidate.strip():
            logger.debug(f"Using default table: {self.default_table_name}")
            return self.default_table_name

        if candidate.startswith(self.reference_prefix):
            return self._resolve_reference(candidate)

        reason = self.validation_failure(candidate)
        if reason is not None:
            logger.error(f"Rejected table name {candidate!r}: {reason}")
            raise InvalidTableNameError(candidate, reason)

        logger.debug(f"Using table name as given: {candidate}")
        return candidate

    def _resolve_reference(self, key: str) -> str:
        configured = self.references.get(key)
        if not configured or not configured.strip():
            logger.info(
                f"Table reference '{key}' is not configured, "
                f"falling back to {self.default_table_name}"
            )
            return self.default_table_name

        reason = self.validation_failure(configured)
        if reason is not None:
            raise InvalidTableNameError(configured, f"reference '{key}': {reason}")

        logger.debug(f"Resolved table reference '{key}' -> {configured}")
        return configured
