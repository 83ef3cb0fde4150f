from datetime import datetime, timezone

from pickem import db


class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Action details (admin_user_id is empty for actions run from the CLI)
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=True
    )  # User being acted upon

    # Action type and details
    action_type = db.Column(
        db.String(50), nullable=False
    )  # 'recompute_game', 'recompute_user', 'assign_pick', etc.
    action_description = db.Column(db.String(500), nullable=False)

    # Related object IDs for context
    pick_id = db.Column(db.Integer, db.ForeignKey("picks.id"), nullable=True)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=True)
    season = db.Column(db.Integer, nullable=True)

    # Additional context data (JSON)
    action_metadata = db.Column(db.JSON, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    admin_user = db.relationship("User", foreign_keys=[admin_user_id])
    target_user = db.relationship("User", foreign_keys=[target_user_id])

    # Indexes
    __table_args__ = (
        db.Index("idx_admin_action_admin", "admin_user_id"),
        db.Index("idx_admin_action_target", "target_user_id"),
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        actor = self.admin_user.display_name if self.admin_user else "cli"
        return f"<AdminAction {self.action_type} by {actor}>"

    @staticmethod
    def log_action(
        action_type,
        description,
        admin_user_id=None,
        target_user_id=None,
        pick_id=None,
        game_id=None,
        season=None,
        action_metadata=None,
    ):
        """Log an admin action"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            target_user_id=target_user_id,
            action_type=action_type,
            action_description=description,
            pick_id=pick_id,
            game_id=game_id,
            season=season,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action
