"""Directory Hub Flask Application Package.

To use the Flask app:
    from directory_hub.flask_app import create_app

To use the core services without Flask:
    from directory_hub.core.share_links import ShareTokenManager
    from directory_hub.core.sync import DirectorySyncEngine
"""
# Note: We don't import flask_app by default so scripts that only need
# the core services (audit verification, share link reaper) skip Flask.
