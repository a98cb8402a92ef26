"""Pure helper functions shared by services."""
