"""Provider access — the only place that talks to the model API."""
