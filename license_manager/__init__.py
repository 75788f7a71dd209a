"""Azure DevOps license management package.

To run a reconciliation pass:
    from license_manager.config import load_settings
    from license_manager.core.reconciler import build_reconciler

    report = build_reconciler(load_settings()).run()

To expose the HTTP trigger:
    from license_manager.flask_app import create_app
"""
# Note: flask_app is not imported here so the CLI does not pull in Flask.
