from app import create_app, db
import os

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# ── AUTO-INIT ──
# Ensures tables exist on first boot (no shell access on some hosts)
with app.app_context():
    try:
        db.create_all()
        from app.auth.models import User
        if not User.query.first():
            app.logger.warning("Database has no users. Run: flask seed-admin")
    except Exception as e:
        app.logger.error(f"Startup sequence failed: {e}")
        raise

if __name__ == "__main__":
    app.run(threaded=True)
