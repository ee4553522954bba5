"""
Point calculation for Score Predictor

Pure functions only. Per-user aggregation lives in
predictor/services/leaderboard_service.py, incremental updates in
predictor/services/prediction_ledger.py.
"""

EXACT_POINTS = 3
OUTCOME_POINTS = 1

EXACT = "exact"
OUTCOME = "outcome"
MISS = "miss"


def determine_outcome(home_score, away_score):
    """Return "home", "away" or "draw" for a scoreline"""
    if home_score > away_score:
        return "home"
    if home_score < away_score:
        return "away"
    return "draw"


def classify_prediction(predicted_home, predicted_away, actual_home, actual_away):
    """
    Classify a prediction against a result.

    Returns:
        "exact" when both scores match
        "outcome" when only the home win / away win / draw outcome matches
        "miss" otherwise
    """
    if predicted_home == actual_home and predicted_away == actual_away:
        return EXACT
    if determine_outcome(predicted_home, predicted_away) == determine_outcome(
        actual_home, actual_away
    ):
        return OUTCOME
    return MISS


def calculate_points(
    predicted_home, predicted_away, actual_home, actual_away, multiplier=1
):
    """
    Calculate points for a single prediction.

    Returns:
        3 * multiplier for an exact scoreline
        1 * multiplier for the correct outcome
        0 otherwise

    Args:
        multiplier: the fixture's points_multiplier, never a per-call value
    """
    category = classify_prediction(
        predicted_home, predicted_away, actual_home, actual_away
    )
    if category == EXACT:
        return EXACT_POINTS * multiplier
    if category == OUTCOME:
        return OUTCOME_POINTS * multiplier
    return 0


def classify_points(points, multiplier=1):
    """Map a stored points value back to its category.

    Returns None for unscored (NULL) points. Values that are not a valid
    score for the multiplier are treated as a miss.
    """
    if points is None:
        return None
    if points == EXACT_POINTS * multiplier:
        return EXACT
    if points == OUTCOME_POINTS * multiplier:
        return OUTCOME
    return MISS


def ranking_key(total_points, correct_scorelines, correct_outcomes, name, user_id):
    """Sort key for leaderboard order.

    Points, then exact scorelines, then correct outcomes (all descending),
    then name case-insensitively and finally user id so the order is total
    even when names collide or are empty.
    """
    return (
        -(total_points or 0),
        -(correct_scorelines or 0),
        -(correct_outcomes or 0),
        (name or "").casefold(),
        user_id,
    )
