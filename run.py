from predictor import create_app, db
from predictor.models import (
    Fixture,
    LeaderboardEntry,
    LeaderboardMeta,
    Organization,
    Prediction,
    Team,
    User,
)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "Organization": Organization,
        "User": User,
        "Team": Team,
        "Fixture": Fixture,
        "Prediction": Prediction,
        "LeaderboardEntry": LeaderboardEntry,
        "LeaderboardMeta": LeaderboardMeta,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
