"""Canonical role representation shared by storage, tokens and the API."""

from enum import Enum


class Role(str, Enum):
    """Closed set of roles a principal can hold.

    Values are the lower-case strings used in tokens and JSON bodies. The
    database column stores the member names (``ADMIN``, ``DATA_ENTRY`` ...),
    which is how SQLAlchemy's ``Enum`` type persists a Python enum.
    """

    ADMIN = "admin"
    USER = "user"
    DATA_ENTRY = "data_entry"
    CLIENT_USER = "client_user"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Accept ``admin``, ``ADMIN``, ``client-user`` and friends."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown role: {value}") from None
