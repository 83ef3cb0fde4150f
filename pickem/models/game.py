from datetime import datetime, timezone

from pickem import db

GAME_STATUSES = ("scheduled", "in_progress", "completed")


class Game(db.Model):
    __tablename__ = "games"

    id = db.Column(db.Integer, primary_key=True)

    # Game identification
    external_id = db.Column(db.String(64), unique=True, index=True)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)

    # Game timing
    kickoff_at = db.Column(db.DateTime)

    # Point spread (negative = home team favored)
    spread = db.Column(db.Float)

    # Scores
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    # Lifecycle: scheduled -> in_progress -> completed
    status = db.Column(db.String(20), nullable=False, default="scheduled")

    # Resolution (written once per claim of the completion gate)
    outcome = db.Column(db.String(10))  # home / away / push
    margin_bonus = db.Column(db.Integer, default=0)
    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolution_version = db.Column(db.Integer, nullable=False, default=0)
    resolved_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )

    # Indexes
    __table_args__ = (
        db.Index("idx_game_season_week", "season", "week"),
        db.Index("idx_game_status_resolved", "status", "is_resolved"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} Week {self.week}>"

    @property
    def is_completed(self):
        return self.status == "completed"

    @property
    def covering_team(self):
        """Get the team that covered the spread (None if unresolved or push)"""
        if self.outcome == "home":
            return self.home_team
        if self.outcome == "away":
            return self.away_team
        return None

    def get_picks_count(self):
        """Get count of picks for each side, across both submission channels"""
        from .pick import Pick

        home_picks = self.picks.filter(Pick.selected_side == "home").count()
        away_picks = self.picks.filter(Pick.selected_side == "away").count()
        lock_picks = self.picks.filter(Pick.is_lock.is_(True)).count()

        return {
            "home": home_picks,
            "away": away_picks,
            "locks": lock_picks,
            "total": home_picks + away_picks,
        }

    @staticmethod
    def get_games_for_week(season, week):
        """Get all games for a specific week"""
        return (
            Game.query.filter_by(season=season, week=week)
            .order_by(Game.kickoff_at, Game.id)
            .all()
        )

    @staticmethod
    def get_unresolved_completed(limit=None):
        """Completed games whose resolved marker has not been set yet"""
        query = Game.query.filter(
            Game.status == "completed", Game.is_resolved.is_(False)
        ).order_by(Game.kickoff_at, Game.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def to_dict(self, include_picks_count=False):
        """Convert game to dictionary for API responses"""
        data = {
            "id": self.id,
            "external_id": self.external_id,
            "season": self.season,
            "week": self.week,
            "kickoff_at": self.kickoff_at.isoformat() if self.kickoff_at else None,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "spread": self.spread,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "status": self.status,
            "outcome": self.outcome,
            "covering_team": self.covering_team,
            "margin_bonus": self.margin_bonus,
            "is_resolved": self.is_resolved,
            "resolution_version": self.resolution_version,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

        if include_picks_count:
            data["picks_count"] = self.get_picks_count()

        return data
