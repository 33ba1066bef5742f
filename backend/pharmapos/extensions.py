# Overview: Flask extension instances for database, migrations and domain signals.

from blinker import Namespace
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

signals = Namespace()

# Sent after a sale commits: sender=app, sale=Sale, customer=dict|None
sale_completed = signals.signal("sale-completed")
