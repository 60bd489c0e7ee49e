"""Local development server for the plumbing back-office.

Usage:
    python run.py
    FLASK_ENV=production PORT=8000 python run.py

Cron jobs and one-off tasks go through the Flask CLI instead:
    flask --app run process-nurture-emails
    flask --app run expire-vouchers
    flask --app run import-customers customers.csv
"""

import os

from dotenv import load_dotenv

load_dotenv()  # .env must be loaded before the config classes read os.environ

from backoffice import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(
        debug=app.config.get("DEBUG", False),
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
    )
