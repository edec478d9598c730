"""Engagement identity - an account or an anonymous session"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Identity:
    account_id: Optional[int] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if (self.account_id is None) == (self.session_id is None):
            raise ValueError("Exactly one of account_id or session_id must be set")

    @classmethod
    def resolve(cls, account_id: Optional[int] = None, session_id: Optional[str] = None) -> "Identity":
        """Pick the account when known, otherwise the anonymous session."""
        if account_id is not None:
            return cls(account_id=account_id)
        if session_id:
            return cls(session_id=session_id)
        raise ValueError("An account_id or session_id is required")

    @property
    def is_account(self) -> bool:
        return self.account_id is not None

    def filter_for(self, model):
        """Return the WHERE clause selecting this identity's rows on `model`."""
        if self.is_account:
            return model.account_id == self.account_id
        return model.session_id == self.session_id

    def as_columns(self) -> dict:
        return {"account_id": self.account_id, "session_id": self.session_id}

    def __str__(self) -> str:
        if self.is_account:
            return f"account:{self.account_id}"
        return f"session:{self.session_id}"
