"""CLI commands for trialgate."""
