"""HTTP trigger blueprints (health, reconcile) and error handlers."""
