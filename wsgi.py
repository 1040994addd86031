import os

# Force production config unless the deploy environment says otherwise
os.environ.setdefault("APP_ENV", "production")

from flowaid import create_app  # noqa: E402

app = create_app()
