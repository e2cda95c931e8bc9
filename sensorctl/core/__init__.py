"""Protocol, recovery, matching and configuration core."""
