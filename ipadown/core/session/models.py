"""
Session data models.

Contains data classes for credentials and the authenticated request
context handed to the catalog and download services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
import json

from ..crypto import generate_guid


@dataclass
class Credential:
    """
    Store account credentials.

    Attributes:
        apple_id: Account id (email)
        password: Account password as entered (a 2FA code is appended per request, never stored)
        guid: Pseudo device identifier, derived from apple_id when absent
    """
    apple_id: str
    password: str
    guid: Optional[str] = None

    def ensure_guid(self) -> str:
        """Return the guid, deriving it on first use."""
        if not self.guid:
            self.guid = generate_guid(self.apple_id)
        return self.guid

    def to_dict(self) -> dict:
        return {
            'apple_id': self.apple_id,
            'password': self.password,
            'guid': self.guid,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Credential':
        return cls(
            apple_id=data['apple_id'],
            password=data['password'],
            guid=data.get('guid'),
        )


@dataclass
class SessionContext:
    """
    Authenticated request context.

    Attributes:
        headers: Auth headers added to every store request
        cookies: Cookie jar snapshot, one dict per cookie
            (name, value, domain, path)
        account_name: Display name of the account
        guid: Device identifier the store issued the token for
        created_at: When the store granted access
    """
    headers: Dict[str, str]
    cookies: List[Dict[str, str]] = field(default_factory=list)
    account_name: str = ''
    guid: str = ''
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def dsid(self) -> Optional[str]:
        """Numeric account id."""
        return self.headers.get('X-Dsid')

    @property
    def store_front(self) -> Optional[str]:
        return self.headers.get('X-Apple-Store-Front')

    def to_dict(self) -> dict:
        return {
            'headers': dict(self.headers),
            'cookies': [dict(c) for c in self.cookies],
            'account_name': self.account_name,
            'guid': self.guid,
            'created_at': self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionContext':
        return cls(
            headers=dict(data['headers']),
            cookies=[dict(c) for c in data.get('cookies') or []],
            account_name=data.get('account_name') or '',
            guid=data.get('guid') or '',
            created_at=datetime.fromisoformat(data['created_at']) if data.get('created_at') else datetime.now(),
        )


@dataclass
class SessionData:
    """
    Complete persisted identity.

    Contains everything needed to resume without contacting the store.
    """
    credential: Credential
    context: SessionContext

    def to_dict(self) -> dict:
        """
        Convert to dictionary for serialization.

        Returns:
            Dictionary representation
        """
        return {
            'credential': self.credential.to_dict(),
            'context': self.context.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionData':
        """
        Create from dictionary.

        Raises:
            KeyError, TypeError: If required fields are missing
        """
        return cls(
            credential=Credential.from_dict(data['credential']),
            context=SessionContext.from_dict(data['context']),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> 'SessionData':
        return cls.from_dict(json.loads(json_str))

    def is_valid(self) -> bool:
        """
        Check if session data is usable.

        Returns:
            True if credential and auth headers are present
        """
        return bool(
            self.credential.apple_id and
            self.credential.guid and
            self.context.headers.get('X-Dsid') and
            self.context.headers.get('X-Token')
        )
