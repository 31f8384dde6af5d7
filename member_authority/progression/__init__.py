"""Experience, levels, login streaks and leaderboards."""
