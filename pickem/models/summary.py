from datetime import datetime, timezone

from pickem import db


class SummaryMixin:
    """Counters shared by the weekly and season summaries"""

    picks_counted = db.Column(db.Integer, nullable=False, default=0)
    wins = db.Column(db.Integer, nullable=False, default=0)
    losses = db.Column(db.Integer, nullable=False, default=0)
    pushes = db.Column(db.Integer, nullable=False, default=0)
    lock_wins = db.Column(db.Integer, nullable=False, default=0)
    lock_losses = db.Column(db.Integer, nullable=False, default=0)
    lock_pushes = db.Column(db.Integer, nullable=False, default=0)
    total_points = db.Column(db.Integer, nullable=False, default=0)

    # Which submission channels contributed: authenticated / anonymous / mixed
    channel = db.Column(db.String(20), nullable=False, default="authenticated")

    # Competition rank within the scope (None until the ranking engine runs)
    rank = db.Column(db.Integer)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    COUNTER_FIELDS = (
        "picks_counted",
        "wins",
        "losses",
        "pushes",
        "lock_wins",
        "lock_losses",
        "lock_pushes",
        "total_points",
    )

    @property
    def win_percentage(self):
        decided = self.wins + self.losses
        if decided == 0:
            return 0.0
        return round(self.wins / decided * 100, 1)

    def counters(self):
        return {field: getattr(self, field) for field in self.COUNTER_FIELDS}

    def apply_counters(self, values):
        """Copy counters onto the row; returns True if anything changed"""
        changed = False
        for field in self.COUNTER_FIELDS + ("channel",):
            if getattr(self, field) != values[field]:
                setattr(self, field, values[field])
                changed = True
        return changed

    def to_dict(self):
        data = {
            "user_id": self.user_id,
            "display_name": self.user.display_name if self.user else None,
            "season": self.season,
            "rank": self.rank,
            "channel": self.channel,
            "win_percentage": self.win_percentage,
            "last_updated": self.updated_at.isoformat() if self.updated_at else None,
        }
        data.update(self.counters())
        return data


class WeeklySummary(SummaryMixin, db.Model):
    __tablename__ = "weekly_summaries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    user = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", "week", name="unique_user_season_week"),
        db.Index("idx_weekly_summary_scope", "season", "week"),
    )

    def __repr__(self):
        return f"<WeeklySummary user={self.user_id} {self.season} W{self.week} pts={self.total_points}>"

    def to_dict(self):
        data = super().to_dict()
        data["week"] = self.week
        return data


class SeasonSummary(SummaryMixin, db.Model):
    __tablename__ = "season_summaries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)

    user = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("user_id", "season", name="unique_user_season"),
        db.Index("idx_season_summary_scope", "season"),
    )

    def __repr__(self):
        return f"<SeasonSummary user={self.user_id} {self.season} pts={self.total_points}>"
