"""System settings model (key/value switches edited from the admin)."""

from backoffice.extensions import db


class SystemSetting(db.Model):
    __tablename__ = "system_settings"

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @classmethod
    def as_map(cls):
        return {row.key: row.value for row in cls.query.all()}

    @classmethod
    def set(cls, key, value):
        """Upsert a setting. Caller commits."""
        row = db.session.get(cls, key)
        if row is None:
            row = cls(key=key)
            db.session.add(row)
        row.value = value
        return row

    def __repr__(self):
        return f"<SystemSetting {self.key}={self.value!r}>"
