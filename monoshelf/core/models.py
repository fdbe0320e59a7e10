from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

@dataclass
class NavNode:
    """Represents one entry in the book's table of contents."""
    id: str
    href: str         # reference plus optional fragment (e.g., 'part01.html#chapter1')
    label: str
    children: List['NavNode'] = field(default_factory=list)

@dataclass
class LocationEdge:
    """One end of a rendered position."""
    cfi: str
    href: Optional[str] = None

@dataclass
class Location:
    """A position report emitted by the rendition on every relocation."""
    start: LocationEdge
    end: Optional[LocationEdge] = None

@dataclass
class BookMetadata:
    """The two metadata fields the reader surfaces."""
    title: Optional[str] = None
    creator: Optional[str] = None

@dataclass
class AuthUser:
    """An account as returned by the auth service."""
    id: str
    email: str
    display_name: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthUser':
        return cls(
            id=str(data['id']),
            email=data['email'],
            display_name=data['displayName'],
            created_at=str(data.get('createdAt') or ''),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'email': self.email,
            'displayName': self.display_name,
            'createdAt': self.created_at,
        }

@dataclass
class SessionPayload:
    """Bearer token plus the user it was issued for."""
    token: str
    user: AuthUser

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionPayload':
        token = data.get('token')
        if not token or not isinstance(token, str):
            raise ValueError("Session payload is missing a token")
        return cls(token=token, user=AuthUser.from_dict(data['user']))

    def to_dict(self) -> Dict[str, Any]:
        return {'token': self.token, 'user': self.user.to_dict()}
