"""HTTP binding for the shielded pool engine."""
