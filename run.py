from pickem import create_app, db
from pickem.models import AnonymousPick, AuthenticatedPick, Game, Pick, SeasonSummary, User, WeeklySummary

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Game": Game,
        "Pick": Pick,
        "AuthenticatedPick": AuthenticatedPick,
        "AnonymousPick": AnonymousPick,
        "WeeklySummary": WeeklySummary,
        "SeasonSummary": SeasonSummary,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
