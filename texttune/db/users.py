"""User lookup for the dev/guest login."""

from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import select

from texttune.db.session import open_session
from texttune.db.tables import User


class UserStore:
    def __init__(self, engine: Engine):
        self._engine = engine

    def get(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        with open_session(self._engine) as session:
            return session.get(User, user_id)

    def find_or_create_by_email(self, email: str) -> User:
        email = email.strip().lower()
        with open_session(self._engine) as session:
            existing = session.exec(select(User).where(User.email == email)).first()
            if existing is not None:
                return existing
            user = User(email=email, auth_provider="dev", plan="free")
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
