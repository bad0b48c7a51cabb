from typing import Optional

from sqlalchemy.orm import Session

from ...models_calendar import CalendarConnection


class CalendarConnectionRepository:
    @staticmethod
    def get_by_user(db: Session, user_id: int) -> Optional[CalendarConnection]:
        return db.query(CalendarConnection).filter(CalendarConnection.user_id == user_id).first()

    @staticmethod
    def get_active_by_user(db: Session, user_id: int) -> Optional[CalendarConnection]:
        return (
            db.query(CalendarConnection)
            .filter(CalendarConnection.user_id == user_id, CalendarConnection.is_active.is_(True))
            .first()
        )

    @staticmethod
    def upsert(db: Session, user_id: int, **fields) -> CalendarConnection:
        """Replace the user's single connection with a new one of any kind"""
        connection = CalendarConnectionRepository.get_by_user(db, user_id)
        if connection is None:
            connection = CalendarConnection(user_id=user_id)
            db.add(connection)
        # Fields not supplied are cleared so a kind switch leaves no stale tokens
        for column in ("access_token", "refresh_token", "token_expires_at", "account_email", "feed_url", "last_error"):
            setattr(connection, column, fields.pop(column, None))
        for key, value in fields.items():
            setattr(connection, key, value)
        connection.is_active = True
        db.commit()
        db.refresh(connection)
        return connection

    @staticmethod
    def delete(db: Session, connection: CalendarConnection) -> None:
        db.delete(connection)
        db.commit()
