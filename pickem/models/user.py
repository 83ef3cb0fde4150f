from datetime import datetime, timezone

from pickem import db


class User(db.Model):
    """Local projection of a registered contestant.

    Accounts themselves live with the identity provider; this row only holds
    what the leaderboards need to display and reference.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, index=True)
    is_admin = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<User {self.display_name}>"
