"""
Unit tests for competition ranking.
"""

from pickem.services.ranking import assign_competition_ranks


def _ranks(values, key=lambda value: value):
    return [rank for _, rank in assign_competition_ranks(values, key=key)]


class TestAssignCompetitionRanks:
    def test_ties_share_rank_and_next_skips(self):
        assert _ranks([90, 100, 80, 90]) == [1, 2, 2, 4]

    def test_all_tied(self):
        assert _ranks([50, 50, 50]) == [1, 1, 1]

    def test_empty_scope(self):
        assert _ranks([]) == []

    def test_rank_is_one_plus_strictly_higher(self):
        values = [120, 104, 104, 104, 88, 88, 10]
        ranked = assign_competition_ranks(values, key=lambda value: value)

        for value, rank in ranked:
            assert rank == 1 + sum(1 for other in values if other > value)

    def test_tuple_key_breaks_ties(self):
        rows = [
            {"name": "a", "points": 100, "pct": 50.0},
            {"name": "b", "points": 100, "pct": 75.0},
            {"name": "c", "points": 90, "pct": 100.0},
        ]
        ranked = assign_competition_ranks(rows, key=lambda row: (row["points"], row["pct"]))

        assert [(row["name"], rank) for row, rank in ranked] == [("b", 1), ("a", 2), ("c", 3)]
