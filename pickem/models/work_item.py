from datetime import datetime, timezone

from pickem import db


class WorkItem(db.Model):
    """Downstream step that failed and is waiting to be retried.

    One row per distinct piece of work (``dedup_key``); enqueueing the same work
    twice refreshes the existing row instead of adding another.
    """

    __tablename__ = "pending_work"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)
    dedup_key = db.Column(db.String(120), nullable=False, unique=True)

    # Scope of the work (which fields are set depends on kind)
    pick_id = db.Column(db.Integer)
    user_id = db.Column(db.Integer)
    season = db.Column(db.Integer)
    week = db.Column(db.Integer)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)
    next_attempt_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("idx_pending_work_due", "next_attempt_at"),
        db.CheckConstraint(
            "kind IN ('resolve_pick', 'aggregate', 'rank_week', 'rank_season')",
            name="valid_work_kind",
        ),
    )

    def __repr__(self):
        return f"<WorkItem {self.dedup_key} attempts={self.attempts}>"

    @staticmethod
    def make_key(kind, pick_id=None, user_id=None, season=None, week=None):
        if kind == "resolve_pick":
            return f"resolve_pick:{pick_id}"
        if kind == "aggregate":
            return f"aggregate:{season}:{user_id}:{week}"
        if kind == "rank_week":
            return f"rank_week:{season}:{week}"
        if kind == "rank_season":
            return f"rank_season:{season}"
        raise ValueError(f"Unknown work kind: {kind}")
