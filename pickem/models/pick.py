from datetime import datetime, timezone

from sqlalchemy import and_, or_

from pickem import db

PICK_SIDES = ("home", "away")

# Validation states reported by the identity/assignment collaborator
VALIDATION_STATES = (
    "pending_validation",
    "auto_validated",
    "manually_validated",
    "duplicate_conflict",
)
CONFIRMED_STATES = ("auto_validated", "manually_validated")


class Pick(db.Model):
    """A contestant's side selection for one game.

    Tagged on ``channel``: an AuthenticatedPick is owned by ``user_id`` from the
    moment it is submitted; an AnonymousPick only gets an owner once the
    identity collaborator links it to ``assigned_user_id``. Scoring and
    aggregation go through this one table for both channels.
    """

    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(20), nullable=False)

    # Pick identification
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Authenticated channel
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Anonymous channel
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validation_state = db.Column(db.String(30))
    submitter_email = db.Column(db.String(120))

    # Pick details
    selected_side = db.Column(db.String(10), nullable=False)  # home / away
    is_lock = db.Column(db.Boolean, nullable=False, default=False)
    show_on_leaderboard = db.Column(db.Boolean, nullable=False, default=True)
    submitted = db.Column(db.Boolean, nullable=False, default=True)

    # Results (written only by the pick resolver)
    result = db.Column(db.String(10), nullable=False, default="pending")
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    resolved_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user = db.relationship("User", foreign_keys=[user_id])
    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])

    __mapper_args__ = {"polymorphic_on": channel}

    # Constraints and indexes
    __table_args__ = (
        db.Index("idx_pick_game", "game_id"),
        db.Index("idx_pick_user_season_week", "user_id", "season", "week"),
        db.Index("idx_pick_assigned_season_week", "assigned_user_id", "season", "week"),
        db.CheckConstraint("selected_side IN ('home', 'away')", name="valid_pick_side"),
        db.CheckConstraint(
            "result IN ('pending', 'win', 'loss', 'push')", name="valid_pick_result"
        ),
    )

    def __repr__(self):
        return f"<{type(self).__name__} id={self.id} game_id={self.game_id} side={self.selected_side}>"

    @property
    def owner_id(self):
        """User the pick counts for (None while an anonymous pick is unassigned)"""
        raise NotImplementedError

    @property
    def is_resolved(self):
        return self.result != "pending"

    @staticmethod
    def owned_by(user_id):
        """SQL filter matching picks that count for ``user_id`` in either channel"""
        return or_(
            and_(Pick.channel == "authenticated", Pick.user_id == user_id),
            and_(Pick.channel == "anonymous", Pick.assigned_user_id == user_id),
        )

    @staticmethod
    def eligible():
        """SQL filter for picks that feed leaderboard aggregation"""
        return and_(
            Pick.result != "pending",
            Pick.submitted.is_(True),
            Pick.show_on_leaderboard.is_(True),
            or_(
                Pick.channel == "authenticated",
                and_(
                    Pick.channel == "anonymous",
                    Pick.assigned_user_id.isnot(None),
                    Pick.validation_state.in_(CONFIRMED_STATES),
                ),
            ),
        )


class AuthenticatedPick(Pick):
    __mapper_args__ = {"polymorphic_identity": "authenticated"}

    @property
    def owner_id(self):
        return self.user_id

    @staticmethod
    def create(user_id, game, selected_side, is_lock=False, show_on_leaderboard=True):
        """Build a submitted pick for a signed-in user"""
        if selected_side not in PICK_SIDES:
            raise ValueError(f"Invalid side: {selected_side}")

        pick = AuthenticatedPick(
            user_id=user_id,
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_side=selected_side,
            is_lock=is_lock,
            show_on_leaderboard=show_on_leaderboard,
            submitted=True,
        )
        db.session.add(pick)
        return pick


class AnonymousPick(Pick):
    __mapper_args__ = {"polymorphic_identity": "anonymous"}

    @property
    def owner_id(self):
        # Only confirmed picks are attributed to the assigned user
        if self.is_confirmed:
            return self.assigned_user_id
        return None

    @property
    def is_confirmed(self):
        return self.validation_state in CONFIRMED_STATES

    @staticmethod
    def create(
        game,
        selected_side,
        submitter_email=None,
        is_lock=False,
        show_on_leaderboard=True,
        assigned_user_id=None,
        validation_state="pending_validation",
    ):
        """Build a pick submitted without a verified identity"""
        if selected_side not in PICK_SIDES:
            raise ValueError(f"Invalid side: {selected_side}")
        if validation_state not in VALIDATION_STATES:
            raise ValueError(f"Invalid validation state: {validation_state}")

        pick = AnonymousPick(
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_side=selected_side,
            submitter_email=submitter_email,
            is_lock=is_lock,
            show_on_leaderboard=show_on_leaderboard,
            assigned_user_id=assigned_user_id,
            validation_state=validation_state,
            submitted=True,
        )
        db.session.add(pick)
        return pick
